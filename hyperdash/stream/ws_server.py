from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
import logging

from hyperdash.stream.gateway import ConnectionGateway

LOG = logging.getLogger("hyperdash.stream.ws")

router = APIRouter(tags=["Stream"])


def get_gateway(conn) -> ConnectionGateway:
    return conn.app.state.gateway


@router.get("/status")
async def status(request: Request):
    """Stream gateway status: live sessions, relays and counters"""
    gateway = get_gateway(request)
    report = gateway.get_status()
    return {
        "status": "running",
        "upstream": gateway.config.ws_url,
        **report,
        "symbol_count": len(report["subscribed_symbols"]),
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    LOG.info("WebSocket accepted from %s", client)

    gateway = get_gateway(websocket)
    session = await gateway.connect(client, websocket.send_json)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                LOG.info("WebSocket disconnected from %s", client)
                break

            data = message.get("text")
            if data is None and message.get("bytes") is not None:
                data = message["bytes"].decode("utf-8", errors="replace")
            if data is None:
                continue

            LOG.debug("Received from %s: %s", client, data[:200])
            await gateway.handle_message(session, data)
    except WebSocketDisconnect:
        LOG.info("WebSocket disconnected from %s", client)
    except Exception as e:
        LOG.exception("WebSocket error from %s: %s", client, e)
    finally:
        await gateway.disconnect(session)
