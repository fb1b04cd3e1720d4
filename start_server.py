#!/usr/bin/env python3
"""Launch the timeline export service.

Usage:
    ./start_server.py              # Start on 127.0.0.1:5050
    ./start_server.py --port 8080  # Use custom port
    ./start_server.py --host 0.0.0.0 --log-level debug

Runtime settings (media root, concurrency, TTL, ffmpeg path) come from
EXPORT_* environment variables, see export_service/env_config.py.
"""

import argparse
import shutil
import sys


def main():
    parser = argparse.ArgumentParser(description="Launch the timeline export service")
    parser.add_argument("--port", type=int, default=5050, help="Server port (default: 5050)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    # Check for required dependencies
    try:
        import uvicorn
    except ImportError:
        print("""
ERROR: Service dependencies not installed.

Install them with:
    pip install -e .
""")
        sys.exit(1)

    from export_service.env_config import ServiceSettings, configure_logging

    configure_logging(debug=args.debug)
    settings = ServiceSettings.from_env()

    if shutil.which(settings.ffmpeg_path) is None:
        print(f"Warning: ffmpeg not found at '{settings.ffmpeg_path}' - exports will fail with encoder_unavailable")

    url = f"http://{args.host}:{args.port}"

    print(f"""
╔════════════════════════════════════════════════════════╗
║           Timeline Export Service                      ║
╠════════════════════════════════════════════════════════╣
║                                                        ║
║   Server running at: {url:<29} ║
║   Environment:       {settings.environment:<29} ║
║                                                        ║
║   Press Ctrl+C to stop                                 ║
║                                                        ║
╚════════════════════════════════════════════════════════╝
""")

    uvicorn.run("export_service.server:app", host=args.host, port=args.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
