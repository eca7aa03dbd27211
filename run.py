import sys
import logging
import argparse
from markdrop import create_app

log = logging.getLogger('werkzeug')
log.disabled = True
cli = sys.modules['flask.cli']
cli.show_server_banner = lambda *x: None

app = create_app()

def main() -> None:
    p = argparse.ArgumentParser(prog="markdrop")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8073)
    args = p.parse_args()

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )
    print(f"markdrop starting on http://{args.host}:{args.port}", flush=True)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)

if __name__ == "__main__":
    main()
