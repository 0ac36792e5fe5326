import asyncio
import functools
import hmac
import os
import sys

import aiohttp
import orjson
from aiohttp import web
from dotenv import load_dotenv

from dayz_server_lookup.lookup import (
    InvalidInput,
    NotFound,
    ServerDirectory,
    UpstreamUnavailable,
)
from dayz_server_lookup.servers import fetch_servers

load_dotenv(override=True)

API_BASE_URL = "https://api.steampowered.com"
UPSTREAM_TIMEOUT = 10

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = "8000"

DEBUG = os.getenv("LOOKUP_DEBUG") is not None

directory_key = web.AppKey("directory", ServerDirectory)
password_key = web.AppKey("password", str)


def require_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        print(f"Need to pass in {name}")
        sys.exit(1)
    return value


def load_config() -> dict[str, str | int]:
    return {
        "steam_api_key": require_env("STEAM_API_KEY"),
        "password": require_env("LOOKUP_PASSWORD"),
        "host": os.getenv("LOOKUP_HOST", DEFAULT_HOST),
        "port": int(os.getenv("LOOKUP_PORT", DEFAULT_PORT)),
    }


def encode_json(obj) -> str:
    return orjson.dumps(obj).decode("utf-8")


@web.middleware
async def auth_middleware(request: web.Request, handler):
    authorization = request.headers.get("Authorization", "")
    if not hmac.compare_digest(
        authorization.encode("utf-8", "surrogateescape"),
        request.app[password_key].encode("utf-8"),
    ):
        return web.Response(status=401)
    return await handler(request)


async def lookup_server(request: web.Request) -> web.Response:
    address = request.match_info["address"]
    port = request.match_info["port"]
    try:
        server = await request.app[directory_key].resolve(address, port)
    except InvalidInput:
        return web.Response(status=400)
    except UpstreamUnavailable:
        return web.Response(status=500)
    except NotFound:
        if DEBUG:
            print("Not found:", f"{address}:{port}")
        return web.Response(status=404)
    return web.json_response(server, dumps=encode_json)


def make_app(directory: ServerDirectory, password: str) -> web.Application:
    app = web.Application(middlewares=[auth_middleware])
    app[directory_key] = directory
    app[password_key] = password
    app.router.add_get("/{address}/{port}", lookup_server)
    return app


async def main(config):
    async with aiohttp.ClientSession(
        base_url=API_BASE_URL,
        raise_for_status=True,
        timeout=aiohttp.ClientTimeout(total=UPSTREAM_TIMEOUT),
    ) as api_session:
        directory = ServerDirectory(
            functools.partial(fetch_servers, api_session, config["steam_api_key"])
        )
        await directory.refresh()

        runner = web.AppRunner(make_app(directory, config["password"]))
        await runner.setup()
        try:
            site = web.TCPSite(runner, config["host"], config["port"])
            await site.start()
            print("Listening on", f"{config['host']}:{config['port']}")
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


def start():
    config = load_config()
    asyncio.run(main(config))
