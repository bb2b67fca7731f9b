import asyncio
import json
import os
import random
from urllib.parse import parse_qs

import httpx

from annobroker.adapters.http_transport import HttpTransport
from annobroker.core import log
from annobroker.core.metrics import log_snapshot
from annobroker.wire_config import build_from_yaml


def fake_server(request: httpx.Request) -> httpx.Response:
    """Echo the action back; `getDocument` also returns a tiny document."""
    form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
    action = form.get("action", "")
    body = {"action": action, "messages": [[f"{action} ok", "comment", 1000]]}
    if action == "getDocument":
        body["text"] = "Hello world ."
        body["entities"] = [["T1", "Token", [[0, 5]]]]
    return httpx.Response(200, json=body)


async def main():
    os.environ.setdefault("LOG_LEVEL", "INFO")
    log.setup()
    lg = log.get("demo")

    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_server))
    transport = HttpTransport(client=client)
    here = os.path.dirname(__file__)
    dispatcher, broker = build_from_yaml(os.path.join(here, "..", "configs", "broker.yaml"), transport=transport)

    dispatcher.on("messages", lambda msgs: [lg.info("message: %s", m) for m in msgs])

    def on_doc(response):
        lg.info("document: %s", json.dumps(response, default=str))

    for i in range(5):
        # a user who clicks through documents quickly only wants the latest one
        if random.random() < 0.5:
            dispatcher.post("makeAjaxObsolete", False)
        dispatcher.post("ajax", {"action": "getDocument", "document": f"doc{i}"}, on_doc)

    lg.info("reload okay while busy? %s", dispatcher.ask_all("isReloadOkay"))
    await transport.wait_idle()
    await dispatcher.queue.drain()
    lg.info("reload okay when idle? %s", dispatcher.ask_all("isReloadOkay"))

    await transport.aclose()
    log_snapshot(log.get("metrics"), broker=broker.name)


if __name__ == "__main__":
    asyncio.run(main())
