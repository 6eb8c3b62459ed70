#!/usr/bin/env python3
"""
Notifier Runner
===============

Run the notification API or its queue maintenance workers.

Usage:
    python run_app.py                    # API with auto-reload
    python run_app.py --mode prod        # API without reload
    python run_app.py --mode celery      # Celery worker for maintenance tasks
    python run_app.py --mode beat        # Celery beat (dead-letter reports)
    python run_app.py --port 8001        # Custom port
"""

import argparse
import os
import subprocess
import sys

def check_environment():
    """Report on local configuration"""
    print("\n🔍 Checking environment...")

    if os.path.exists(".env"):
        print("✅ .env file found")
    else:
        print("⚠️  .env file not found, using defaults")

    if os.path.exists("notifier.db"):
        print("✅ Database file found")
    else:
        print("⚠️  Database file not found (will be created)")

def run_api(host="0.0.0.0", port=8000, reload=True):
    """Run the FastAPI application"""
    print(f"\n🚀 Starting Notifier API on {host}:{port}")
    print(f"📖 API Docs: http://localhost:{port}/api/docs")
    print("\n" + "="*50)

    try:
        import uvicorn
        uvicorn.run(
            "notifier.main:app",
            host=host,
            port=port,
            reload=reload,
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")

def run_celery(component):
    """Run a Celery worker or beat scheduler"""
    command = [sys.executable, "-m", "celery", "-A", "notifier.core.celery_app", component, "-l", "info"]
    if component == "worker":
        command += ["-Q", "default,maintenance"]

    print(f"\n⚙️  Starting Celery {component}")
    try:
        subprocess.run(command, check=True)
    except KeyboardInterrupt:
        print(f"\n👋 Celery {component} stopped by user")
    except subprocess.CalledProcessError as e:
        print(f"❌ Celery {component} exited with {e.returncode}")
        return e.returncode
    return 0

def main():
    parser = argparse.ArgumentParser(
        description="Notifier Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--mode",
        choices=["dev", "prod", "celery", "beat"],
        default="dev",
        help="What to run (default: dev)"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")

    args = parser.parse_args()

    if args.mode == "celery":
        return run_celery("worker")
    if args.mode == "beat":
        return run_celery("beat")

    check_environment()
    run_api(args.host, args.port, reload=args.mode == "dev")
    return 0

if __name__ == "__main__":
    sys.exit(main())
