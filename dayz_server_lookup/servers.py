import re
import traceback
from collections.abc import Iterable

import aiohttp
import orjson

SERVER_LIST_PATH = "/IGameServersService/GetServerList/v1/"

QUERY_FILTER = r"\appid\221100"
QUERY_LIMIT = "100000"

DEFAULT_TIME = "00:00"
DEFAULT_ACCELERATION = 1

QUEUE_FLAG = re.compile(r"lqs(\d+)")
DAY_ACCELERATION_FLAG = re.compile(r"etm(\d+)")
NIGHT_ACCELERATION_FLAG = re.compile(r"entm(\d+)")
TIME_FLAG = re.compile(r"\d+:\d+")

ServerInfo = dict


def decode_flags(flags: Iterable[str]) -> dict[str, int | str]:
    """
    Decodes the gametype tags DayZ servers advertise into queue and environment
    overrides. Only keys for tags that were present are returned, later tags
    overwrite earlier ones.
    """
    overrides = {}
    for flag in flags:
        flag = flag.strip()
        if match := QUEUE_FLAG.fullmatch(flag):
            overrides["queue"] = int(match[1])
        elif match := DAY_ACCELERATION_FLAG.fullmatch(flag):
            overrides["dayAcceleration"] = int(match[1])
        elif match := NIGHT_ACCELERATION_FLAG.fullmatch(flag):
            overrides["nightAcceleration"] = int(match[1])
        elif TIME_FLAG.fullmatch(flag):
            overrides["time"] = flag
    return overrides


def normalize_server(server: dict) -> ServerInfo:
    """
    Converts a server from the GetServerList response into a ServerInfo.
    Raises if the address or game port are missing or unparsable.
    """
    address = server["addr"].split(":")[0]
    port = int(server["gameport"])
    flags = decode_flags(server.get("gametype", "").split(","))
    return {
        "name": server.get("name", ""),
        "address": address,
        "port": port,
        "players": {
            "current": int(server.get("players", 0)),
            "queue": flags.get("queue", 0),
            "max": int(server.get("max_players", 0)),
        },
        "env": {
            "map": server.get("map", ""),
            "time": flags.get("time", DEFAULT_TIME),
            "dayAcceleration": flags.get("dayAcceleration", DEFAULT_ACCELERATION),
            "nightAcceleration": flags.get(
                "nightAcceleration", DEFAULT_ACCELERATION
            ),
        },
    }


async def fetch_servers(
    api_session: aiohttp.ClientSession, api_key: str
) -> list[ServerInfo] | None:
    """
    Fetches the full DayZ server list.
    :return: All servers normalized, or None if any part of the fetch failed
    """
    server_params = {
        "key": api_key,
        "filter": QUERY_FILTER,
        "limit": QUERY_LIMIT,
    }
    try:
        async with api_session.get(SERVER_LIST_PATH, params=server_params) as resp:
            body = await resp.read()
            body = body.decode("utf-8", errors="replace")
            body = orjson.loads(body)
            pending_servers = body["response"]["servers"]
            return [normalize_server(server) for server in pending_servers]
    except Exception:
        traceback.print_exc()
        return None
