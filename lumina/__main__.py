"""
Lumina photo gallery server and storage tools
"""

import argparse
import asyncio
import inspect
import logging
import os
import secrets
import sys
from pathlib import Path

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from lumina.config import ENV_PREFIX, get_settings, validate_settings
from lumina.connections import lumina_connections
from lumina.storage.assets import rebuild_index
from lumina.storage.index import paginate, read_index


def _exit_if_unconfigured():
    if problems := validate_settings():
        for problem in problems:
            logging.error(problem)
        logging.error(f"Create a .env file or set the {ENV_PREFIX.upper()}* environment variables (see `config`)")
        sys.exit(1)


def run(args):
    settings = get_settings()
    _exit_if_unconfigured()
    logging.info(
        f"Starting server at port {args.port}, debug={not args.nodebug}, "
        f"storing in {settings.gh_owner}/{settings.gh_repo}@{settings.gh_branch}"
    )
    if not settings.upload_token:
        logging.warning("Warning: No upload token is set, uploading, changing and deleting images is disabled")
    log_config = "logging.yml" if Path("logging.yml").exists() else LOGGING_CONFIG
    uvicorn.run("lumina.api:app", host="0.0.0.0", reload=not args.nodebug, port=int(args.port), log_config=log_config)


def base_env():
    return dict(
        lumina_upload_token=secrets.token_hex(nbytes=32),
        lumina_gh_branch="main",
    )


def create_env(args):
    if os.path.exists(".env"):
        print("*** File .env already exists, quitting ***")
        sys.exit(1)

    env = base_env()
    if args.owner:
        env["lumina_gh_owner"] = args.owner
    if args.repo:
        env["lumina_gh_repo"] = args.repo
    with open(".env", "w") as f:
        f.write("# GitHub token with contents read/write permission on the repository\n")
        f.write("lumina_github_token=\n")
        for key, val in env.items():
            f.write(f"{key}={val}\n")
    os.chmod(".env", 0o600)
    print("*** Created .env file, fill in lumina_github_token ***")


def show_config(_args):
    settings = get_settings()
    print(f"Reading settings from environment and {settings.env_file}")
    for fieldname, fieldinfo in type(settings).model_fields.items():
        value = getattr(settings, fieldname)
        if fieldname in ("github_token", "upload_token") and value:
            value = "***"
        if doc := fieldinfo.description:
            print(f"# {doc}")
        print(f"{ENV_PREFIX}{fieldname}={'' if value is None else value}\n")
    for problem in validate_settings():
        print(f"!! {problem}")


async def list_index(args):
    _exit_if_unconfigured()
    async with lumina_connections():
        index = await read_index()
        if index is None or not index.items:
            print("(No image index yet, run rebuild-index if the repository already contains images)")
            return
        page, next_cursor = paginate(index.items, limit=args.limit, cursor=args.cursor)
        for entry in page:
            print(f"{entry.created_at}  {entry.image_id}")
        print(f"-- {len(page)} of {len(index.items)} images")
        if next_cursor:
            print(f"-- next page: --cursor {next_cursor}")


async def rebuild(_args):
    _exit_if_unconfigured()
    async with lumina_connections():
        index = await rebuild_index()
        print(f"Index rebuilt with {len(index.items)} images")


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m lumina")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("run", help="Run the backend API in development mode")
    p.add_argument(
        "--no-debug",
        action="store_true",
        dest="nodebug",
        help="Disable debug mode (useful for testing downstream clients)",
    )
    p.add_argument("-p", "--port", help="Port", default=5000)
    p.set_defaults(func=run)

    p = subparsers.add_parser("create-env", help="Create the .env file with a random upload token")
    p.add_argument("-o", "--owner", help="Owner of the storage repository")
    p.add_argument("-r", "--repo", help="Name of the storage repository")
    p.set_defaults(func=create_env)

    p = subparsers.add_parser("config", help="Show the current settings")
    p.set_defaults(func=show_config)

    p = subparsers.add_parser("list", help="List images in the index, newest first")
    p.add_argument("-n", "--limit", type=int, default=20, help="Number of images to list")
    p.add_argument("-c", "--cursor", help="Cursor printed at the end of the previous page")
    p.set_defaults(func=list_index)

    p = subparsers.add_parser("rebuild-index", help="Recreate the image index from the stored metadata files")
    p.set_defaults(func=rebuild)

    args = parser.parse_args()

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if inspect.iscoroutinefunction(args.func):
        asyncio.run(args.func(args))
    else:
        args.func(args)


if __name__ == "__main__":
    main()
