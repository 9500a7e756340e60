#!/usr/bin/env python3
"""
Namma Paisa Loans Service Entry Point

Starts the FastAPI server, or prints a bearer token for local testing:

    python run.py
    python run.py --token alice --role SUPER_ADMIN
"""

import argparse
import sys

import uvicorn

from namma_paisa.config import get_config
from namma_paisa.context import Role


def main(argv=None) -> int:
    config = get_config()
    parser = argparse.ArgumentParser(description="Namma Paisa loans service")
    parser.add_argument("--host", default=config.api_host)
    parser.add_argument("--port", type=int, default=config.api_port)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--token", metavar="USER_ID", help="Print a bearer token for USER_ID and exit")
    parser.add_argument("--role", action="append", choices=[r.value for r in Role],
                        help="Role to put in the token (repeatable)")
    args = parser.parse_args(argv)

    if args.token:
        from namma_paisa.api.dependencies import create_access_token
        roles = [Role(name) for name in args.role or [Role.CUSTOMER.value]]
        print(create_access_token(args.token, roles))
        return 0

    print(f"Starting Namma Paisa loans API at http://{args.host}:{args.port}")
    print(f"Documentation at: http://{args.host}:{args.port}/docs")
    try:
        uvicorn.run(
            "namma_paisa.api:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        print("\nShutting down Namma Paisa loans API...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
