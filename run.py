#!/usr/bin/env python
"""
ICT Engine - Single Command Startup

Starts the FastAPI server with settings from config.yaml.
"""

import argparse
import os
import sys

import uvicorn

from ict_engine.config import load_config


def print_startup_banner(config, host: str, port: int):
    """Print startup information"""
    sessions = ', '.join(s['label'] for s in config['sessions'])
    print("\n" + "=" * 70)
    print("  ICT Engine")
    print("=" * 70)
    print(f"  Server: http://{host if host != '0.0.0.0' else 'localhost'}:{port}")
    print(f"  Sessions (UTC): {sessions}")
    print(f"  Trade memory: {config['trade_memory']['path']}")
    print("=" * 70 + "\n")


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Start the ICT engine API server')
    parser.add_argument('--config', help='Path to config.yaml')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload for development')
    parser.add_argument('--host', help='Bind address (default: server.host)')
    parser.add_argument('--port', type=int, help='Port (default: server.port)')
    parser.add_argument('--log-level', choices=['debug', 'info', 'warning', 'error', 'critical'],
                        help='Log level (default: server.log_level)')
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)

    # the app module reads the same file on import
    if args.config:
        os.environ['ICT_ENGINE_CONFIG'] = args.config

    host = args.host or config['server']['host']
    port = args.port or config['server']['port']
    log_level = args.log_level or config['server']['log_level']
    reload = args.reload or config['server']['reload']

    print_startup_banner(config, host, port)

    try:
        uvicorn.run(
            "ict_engine.app:app",
            host=host,
            port=port,
            reload=reload,
            log_level=log_level
        )
    except KeyboardInterrupt:
        print("\nShutting down")
    except Exception as e:
        print(f"\nError starting server: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
