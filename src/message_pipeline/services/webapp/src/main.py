"""Web App Service - accepts messages and lists stored records."""

import html
import json
import logging
import os
import random
import sys
from datetime import datetime
from typing import Optional

from aiohttp import web, web_request
from aiohttp.web_response import Response

from message_pipeline.shared.config.settings import PipelineConfig, load_config
from message_pipeline.shared.db_writer import PersistenceGateway
from message_pipeline.shared.errors import QueueTransportError
from message_pipeline.shared.queue_client import QueueClient
from message_pipeline.shared.startup import GatePolicy, StartupGate
from message_pipeline.shared.utils.logging import setup_logging

from .generator import generate_message


logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", PipelineConfig)
QUEUE_KEY = web.AppKey("queue", QueueClient)
GATEWAY_KEY = web.AppKey("gateway", PersistenceGateway)
GATE_KEY = web.AppKey("gate", StartupGate)
RNG_KEY = web.AppKey("rng", random.Random)

INDEX_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>Message Pipeline</title></head>
<body>
<h1>Send a message</h1>
<form method="post" action="/messages">
  <input type="text" name="message" maxlength="1000" value="{suggestion}" size="60">
  <button type="submit">Send</button>
</form>
<p><a href="/messages">Stored messages</a></p>
</body>
</html>
"""


class MessageHandler:
    """HTTP handlers for the message front end."""

    async def index(self, request: web_request.Request) -> Response:
        """Form pre-filled with a random suggestion."""
        suggestion = generate_message(request.app[RNG_KEY], datetime.now())
        return web.Response(
            text=INDEX_TEMPLATE.format(suggestion=html.escape(suggestion, quote=True)),
            content_type="text/html"
        )

    async def submit(self, request: web_request.Request) -> Response:
        """Push a message onto the queue.

        Form posts are redirected back to the form; JSON posts get the new
        queue length back. Empty messages are ignored.
        """
        wants_json = request.content_type == "application/json"
        if wants_json:
            try:
                body = await request.json()
            except json.JSONDecodeError as e:
                return web.json_response({"queued": False, "error": f"Invalid JSON: {e}"}, status=400)
            message = body.get("message", "") if isinstance(body, dict) else ""
        else:
            form = await request.post()
            message = form.get("message", "")

        queue_length = None
        if message:
            try:
                queue_length = await request.app[QUEUE_KEY].push(str(message))
            except QueueTransportError as e:
                logger.error(f"Failed to enqueue message: {e}")
                return web.json_response({"queued": False, "error": str(e)}, status=503)
            logger.info("Message queued")

        if wants_json:
            return web.json_response(
                {"queued": queue_length is not None, "queue_length": queue_length},
                status=202 if queue_length is not None else 400
            )
        raise web.HTTPSeeOther("/")

    async def list_messages(self, request: web_request.Request) -> Response:
        """Most recent stored messages, newest first."""
        limit = request.app[CONFIG_KEY].web.recent_limit
        try:
            records = await request.app[GATEWAY_KEY].recent(limit)
        except Exception as e:
            logger.error(f"Failed to load messages: {e}")
            return web.json_response(
                {"messages": [], "error": f"Unable to connect to database: {e}"},
                status=503
            )

        return web.json_response({"messages": [record.to_dict() for record in records]})

    async def ready(self, request: web_request.Request) -> Response:
        """Readiness probe reflecting the startup gate outcome."""
        is_ready = request.app[GATE_KEY].ready
        return web.json_response(
            {"ready": is_ready, "timestamp": datetime.now().isoformat()},
            status=200 if is_ready else 503
        )


async def _open_gate(app: web.Application):
    # Failure only warns: the worker owns schema provisioning too
    await app[GATE_KEY].open()


async def _close_connections(app: web.Application):
    await app[QUEUE_KEY].close()
    await app[GATEWAY_KEY].close()


def create_app(
    config: PipelineConfig,
    queue: Optional[QueueClient] = None,
    gateway: Optional[PersistenceGateway] = None,
    rng: Optional[random.Random] = None
) -> web.Application:
    """Build the aiohttp application with its shared connections."""
    app = web.Application()

    gateway = gateway or PersistenceGateway(config.database)
    app[CONFIG_KEY] = config
    app[QUEUE_KEY] = queue or QueueClient(config.redis)
    app[GATEWAY_KEY] = gateway
    app[GATE_KEY] = StartupGate(gateway, GatePolicy.WARN, config.startup)
    app[RNG_KEY] = rng or random.Random()

    handler = MessageHandler()
    app.router.add_get('/', handler.index)
    app.router.add_post('/messages', handler.submit)
    app.router.add_get('/messages', handler.list_messages)
    app.router.add_get('/ready', handler.ready)

    app.on_startup.append(_open_gate)
    app.on_cleanup.append(_close_connections)
    return app


def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        config = load_config(config_file)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.logging, service_name="webapp")
    web.run_app(create_app(config), host=config.web.host, port=config.web.port)


if __name__ == "__main__":
    main()
