import argparse

import uvicorn


def main() -> None:
    ap = argparse.ArgumentParser(description="Run the boxoffice API server")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=8000)
    ap.add_argument("--reload", action="store_true",
                    help="restart on code changes (development)")
    args = ap.parse_args()

    # a single process; SQLite does not like concurrent writer processes
    uvicorn.run(
        "boxoffice.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
