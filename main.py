"""Story Memory launcher. Serves the HTTP API or the MCP tool server."""

import argparse
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "13015"))


def main():
    parser = argparse.ArgumentParser(description="Story Memory launcher")
    parser.add_argument("command", nargs="?", choices=["serve", "mcp"], default="serve",
                        help="serve: HTTP API (default); mcp: MCP tool server on stdio")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Campaign storage directory (default: DATA_DIR or ./data)")
    parser.add_argument("--campaign", default="default",
                        help="Campaign the MCP server records into (default: default)")
    parser.add_argument("--demo", action="store_true",
                        help="Recreate the demo campaign before starting")
    args = parser.parse_args()

    from story_memory.config import load_settings
    from story_memory.persistence import CampaignStorage

    settings = load_settings(ROOT / ".env")
    if args.data_dir:
        settings = settings.model_copy(update={"data_dir": args.data_dir})
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    storage = CampaignStorage(settings.data_dir)
    if args.demo:
        from story_memory.demo import DEMO_SLUG, create_demo_data
        create_demo_data(storage)
        logging.getLogger(__name__).info("demo campaign written to %s", DEMO_SLUG)

    if args.command == "mcp":
        from story_memory import mcp_server
        mcp_server.attach_campaign(storage, args.campaign)
        mcp_server.mcp.run()
        return

    import uvicorn
    print(f"Starting Story Memory API on http://{HOST}:{PORT} ...")
    uvicorn.run("story_memory.app:create_app", factory=True, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
