from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .errors import BusyError, UnknownDeviceError, WriteError
from .runtime import Dashboard
from .schemas import (
    ActivityEntryOut,
    ControlStateOut,
    ControlUpdateRequest,
    DeviceOut,
    PredictorConfig,
    StatusOut,
    SummaryOut,
    ToggleGroupRequest,
    control_state,
)
from .store import KeyValueStore
from .ws import ACTIVITY, DEVICES, WSManager

logger = logging.getLogger("soledge-api")


def error_response(status: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "code": code,
            "message": message,
            "details": details or {},
        },
    )


def create_app(settings: Settings | None = None, store: KeyValueStore | None = None, **dashboard_kwargs: Any) -> FastAPI:
    settings = settings or get_settings()
    dashboard = Dashboard(settings, store=store, **dashboard_kwargs)
    ws_manager = WSManager()

    def device_list() -> list[DeviceOut]:
        return [DeviceOut.from_device(d, dashboard.engine.is_pending(d.id)) for d in dashboard.engine.devices]

    def activity_list() -> list[ActivityEntryOut]:
        return [ActivityEntryOut.from_event(e) for e in dashboard.activity.entries()]

    ws_manager.register(DEVICES, lambda: [d.model_dump() for d in device_list()])
    ws_manager.register(ACTIVITY, lambda: [e.model_dump(mode="json") for e in activity_list()])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await dashboard.start()
        removers = [
            dashboard.engine.add_listener(lambda: ws_manager.changed(DEVICES)),
            dashboard.activity.add_listener(lambda _event: ws_manager.changed(ACTIVITY)),
        ]
        try:
            yield
        finally:
            for remove in removers:
                remove()
            await dashboard.stop()

    app = FastAPI(title="SOLEdge Dashboard", version="1.0.0", lifespan=lifespan)
    app.state.dashboard = dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request, exc: RequestValidationError):
        return error_response(400, "BAD_REQUEST", "request validation failed", {"errors": exc.errors()})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "running": dashboard.running,
            "store": type(dashboard.store).__name__,
            "encoding": dashboard.registry.encoding.value,
        }

    @app.get("/api/devices", response_model=list[DeviceOut])
    async def get_devices() -> list[DeviceOut]:
        return device_list()

    @app.get("/api/summary", response_model=SummaryOut)
    async def get_summary() -> SummaryOut:
        return SummaryOut.from_summary(dashboard.engine.summary())

    @app.post("/api/devices/{device_id}/toggle", response_model=DeviceOut)
    async def toggle_device(device_id: str) -> Any:
        try:
            device = await dashboard.toggle(device_id)
        except UnknownDeviceError:
            return error_response(404, "NOT_FOUND", "device not found")
        except BusyError as exc:
            return error_response(409, "BUSY", "write already pending", {"deviceIds": list(exc.device_ids)})
        except WriteError as exc:
            return error_response(502, "WRITE_FAILED", exc.message, {"deviceIds": list(exc.device_ids)})
        if device is None:
            return error_response(404, "NOT_FOUND", "device not found")
        return DeviceOut.from_device(device)

    @app.post("/api/devices/toggle_group", response_model=list[DeviceOut])
    async def toggle_group(req: ToggleGroupRequest) -> Any:
        try:
            devices = await dashboard.toggle_group(req.deviceIds, target=req.target)
        except UnknownDeviceError as exc:
            return error_response(404, "NOT_FOUND", "device not found", {"deviceId": exc.device_id})
        except BusyError as exc:
            return error_response(409, "BUSY", "write already pending", {"deviceIds": list(exc.device_ids)})
        except WriteError as exc:
            return error_response(502, "WRITE_FAILED", exc.message, {"deviceIds": list(exc.device_ids)})
        return [DeviceOut.from_device(d) for d in devices]

    @app.get("/api/control", response_model=ControlStateOut)
    async def get_control() -> ControlStateOut:
        control = dashboard.control
        return control_state(control.decide(), control.low_production_w, control.high_consumption_w)

    @app.put("/api/control", response_model=ControlStateOut)
    async def put_control(req: ControlUpdateRequest) -> ControlStateOut:
        control = dashboard.control
        decision = control.update(enabled=req.enabled, production_w=req.productionW, consumption_w=req.consumptionW)
        return control_state(decision, control.low_production_w, control.high_consumption_w)

    @app.get("/api/activity", response_model=list[ActivityEntryOut])
    async def get_activity() -> list[ActivityEntryOut]:
        return activity_list()

    @app.get("/api/status", response_model=StatusOut)
    async def get_status() -> StatusOut:
        engine, telemetry = dashboard.engine, dashboard.telemetry
        connectivity = engine.connectivity_error or telemetry.connectivity_error
        return StatusOut(
            connectivityError=str(connectivity) if connectivity else None,
            writeError=engine.write_error.message if engine.write_error else None,
            configurationError=str(engine.configuration_error) if engine.configuration_error else None,
            predictionError=str(telemetry.prediction_error) if telemetry.prediction_error else None,
            temperature=telemetry.temperature,
            humidity=telemetry.humidity,
            predictedConsumptionKWh=telemetry.predicted_consumption_kwh,
        )

    @app.get("/api/profile/predictor", response_model=PredictorConfig)
    async def get_predictor() -> PredictorConfig:
        return PredictorConfig(address=dashboard.predictor.address)

    @app.put("/api/profile/predictor", response_model=PredictorConfig)
    async def put_predictor(req: PredictorConfig) -> PredictorConfig:
        return PredictorConfig(address=dashboard.set_predictor_address(req.address))

    @app.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        await ws_manager.connect(ws)
        try:
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            ws_manager.disconnect(ws)
        except Exception:
            ws_manager.disconnect(ws)

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
