"""
Command-line interface for the compliancehub server.
"""

import argparse
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compliancehub-server",
        description="compliancehub - serve compliance form schemas and file applications",
    )

    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: sqlite:///./compliancehub.db)",
    )
    parser.add_argument(
        "--upload-dir",
        default="./uploads",
        help="Directory uploaded documents are stored in (default: ./uploads)",
    )
    parser.add_argument(
        "--public-url",
        default=None,
        help="Base URL placed in pre-signed upload links (default: http://localhost:<port>)",
    )
    parser.add_argument(
        "--schema-dir",
        default=None,
        help="Directory of YAML form schemas (default: bundled schemas)",
    )
    parser.add_argument(
        "--tenants",
        default=None,
        help="Comma-separated tenants accepted in the Version header (default: demo)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    options = {}
    if args.tenants:
        options["tenants"] = {t.strip() for t in args.tenants.split(",") if t.strip()}
    if args.schema_dir:
        options["schema_dir"] = args.schema_dir

    from .app import ComplianceHubServer

    print(f"""
compliancehub server v0.1.0
  Host:     {args.host}
  Port:     {args.port}
  Database: {args.database_url or "sqlite:///./compliancehub.db"}
  Uploads:  {args.upload_dir}

API documentation: http://{args.host}:{args.port}/docs

Press Ctrl+C to stop the server.
""")

    try:
        server = ComplianceHubServer(
            host=args.host,
            port=args.port,
            database_url=args.database_url,
            upload_dir=args.upload_dir,
            public_base_url=args.public_url,
            debug=args.debug,
            log_level=args.log_level,
            **options,
        )
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
