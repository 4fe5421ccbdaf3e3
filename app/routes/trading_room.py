# app/routes/trading_room.py
from typing import Optional
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.database import SessionLocal
from app.models.open_order import OpenOrder
from app.models.scheduled_order import ScheduledOrder
from app.schemas.trading_room import (
    ExecuteRequest,
    OpenOrderAction,
    OpenOrderCreate,
    ScheduledOrderAction,
    ScheduledOrderCreate,
)
from app.services.broadcaster import broadcaster
from app.services.ticker import BybitTickerSource
from app.services.trading import (
    InvalidEntryPrice,
    ScheduledExecutionError,
    cancel_open_order,
    execute_scheduled_order,
    fill_open_order,
    is_ready,
    utcnow,
    validate_scheduled_order,
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trading-room/{room_id}", tags=["Trading Room"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def fetch_last_price(symbol: str) -> Optional[float]:
    """Server-side price lookup for price-based orders executed without a price."""
    source = BybitTickerSource()
    try:
        return await source.last_price(symbol)
    except Exception as e:
        logger.warning("Price lookup failed for %s: %s", symbol, e)
        return None
    finally:
        await source.aclose()


async def publish_change(room_id: str, event_type: str, old: Optional[dict], new: Optional[dict]):
    try:
        await broadcaster.publish(room_id, {"eventType": event_type, "old": old, "new": new})
    except Exception:
        logger.exception("Change publish failed")


# -- open orders ----------------------------------------------------------------

@router.get("/open-orders")
async def list_open_orders(room_id: str, symbol: Optional[str] = None, side: Optional[str] = None,
                           status: str = "open", db: Session = Depends(get_db)):
    q = db.query(OpenOrder).filter(OpenOrder.room_id == room_id, OpenOrder.status == status)
    if symbol:
        q = q.filter(OpenOrder.symbol == symbol)
    if side:
        q = q.filter(OpenOrder.side == side)
    orders = q.order_by(OpenOrder.created_at.desc()).all()
    return {"data": [o.to_dict() for o in orders]}


@router.post("/open-orders", status_code=201)
async def create_open_order(room_id: str, body: OpenOrderCreate, db: Session = Depends(get_db)):
    if not body.symbol or not body.side or not body.limitPrice or not body.quantity:
        return error("Missing required fields", 400)

    order = OpenOrder(
        room_id=room_id,
        user_id=body.userId,
        symbol=body.symbol,
        side=body.side,
        order_type="limit",
        limit_price=body.limitPrice,
        quantity=body.quantity,
        time_in_force=body.timeInForce,
        leverage=body.leverage or 1,
        status="open",
        tp_enabled=body.tpEnabled,
        sl_enabled=body.slEnabled,
        take_profit_price=body.takeProfitPrice,
        stop_loss_price=body.stopLossPrice,
    )
    db.add(order)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("DB commit failed creating open order")
        return error("Failed to create order", 500)

    await publish_change(room_id, "INSERT", None, order.to_dict())
    return {"id": order.id}


@router.patch("/open-orders")
async def update_open_order(room_id: str, body: OpenOrderAction, db: Session = Depends(get_db)):
    if not body.orderId or not body.action:
        return error("Missing required fields", 400)

    order = db.query(OpenOrder).filter(OpenOrder.id == body.orderId, OpenOrder.room_id == room_id).first()
    if order is None:
        return error("Order not found", 404)

    if body.action == "cancel":
        if order.status != "open":
            return {"ok": True}
        before = cancel_open_order(order)
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("DB commit failed cancelling order %s", order.id)
            return error("Failed to cancel", 500)
        await publish_change(room_id, "UPDATE", before, order.to_dict())
        return {"ok": True}

    if body.action == "fill":
        if order.status != "open":
            return {"ok": True}
        try:
            position, before = fill_open_order(db, order, body.fillPrice, body.bid, body.ask)
        except InvalidEntryPrice as e:
            db.rollback()
            logger.error("Invalid entry price for order %s: %s", order.id, e)
            return error("Invalid entry price", 400)
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("DB commit failed filling order %s", body.orderId)
            return error("Failed to update order", 500)
        await publish_change(room_id, "UPDATE", before, order.to_dict())
        return {"positionId": position.id}

    return error("Unknown action", 400)


@router.delete("/open-orders/{order_id}")
async def delete_open_order(room_id: str, order_id: str, db: Session = Depends(get_db)):
    order = db.query(OpenOrder).filter(OpenOrder.id == order_id, OpenOrder.room_id == room_id).first()
    if order is None:
        return error("Order not found", 404)

    before = order.to_dict()
    db.delete(order)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("DB commit failed deleting order %s", order_id)
        return error("Failed to delete order", 500)
    await publish_change(room_id, "DELETE", before, None)
    return {"ok": True}


# -- scheduled orders ---------------------------------------------------------------

@router.get("/scheduled-orders")
async def list_scheduled_orders(room_id: str, status: Optional[str] = None, limit: int = 50, offset: int = 0,
                                db: Session = Depends(get_db)):
    q = db.query(ScheduledOrder).filter(ScheduledOrder.room_id == room_id)
    if status:
        q = q.filter(ScheduledOrder.status == status)
    orders = q.order_by(ScheduledOrder.created_at.desc()).offset(offset).limit(limit).all()
    return {"data": [o.to_dict() for o in orders], "count": len(orders)}


@router.post("/scheduled-orders", status_code=201)
async def create_scheduled_order(room_id: str, body: ScheduledOrderCreate, db: Session = Depends(get_db)):
    errors = validate_scheduled_order(body)
    if errors:
        return JSONResponse({"errors": errors}, status_code=400)

    order = ScheduledOrder(
        room_id=room_id,
        user_id=body.user_id,
        symbol=body.symbol,
        side=body.side,
        order_type=body.order_type,
        quantity=body.quantity,
        price=body.price,
        leverage=body.leverage,
        schedule_type=body.schedule_type,
        scheduled_at=body.scheduled_at,
        trigger_condition=body.trigger_condition,
        trigger_price=body.trigger_price,
        status="pending",
        tp_enabled=body.tp_enabled,
        sl_enabled=body.sl_enabled,
        take_profit_price=body.take_profit_price,
        stop_loss_price=body.stop_loss_price,
    )
    db.add(order)
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("DB commit failed creating scheduled order")
        return error(str(e), 500)
    return {"data": order.to_dict()}


@router.patch("/scheduled-orders/{order_id}")
async def update_scheduled_order(room_id: str, order_id: str, body: ScheduledOrderAction,
                                 db: Session = Depends(get_db)):
    if body.action != "cancel":
        return error("Invalid action", 400)

    order = db.query(ScheduledOrder).filter(
        ScheduledOrder.id == order_id, ScheduledOrder.room_id == room_id
    ).first()
    if order is None:
        return error("Order not found", 404)

    order.status = "cancelled"
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("DB commit failed cancelling scheduled order %s", order_id)
        return error(str(e), 500)
    logger.info("Cancelled scheduled order %s", order_id)
    return {"data": order.to_dict()}


@router.delete("/scheduled-orders/{order_id}")
async def delete_scheduled_order(room_id: str, order_id: str, db: Session = Depends(get_db)):
    deleted = db.query(ScheduledOrder).filter(
        ScheduledOrder.id == order_id, ScheduledOrder.room_id == room_id
    ).delete()
    db.commit()
    logger.info("Deleted scheduled order %s (rows=%s)", order_id, deleted)
    return {"success": True}


@router.post("/scheduled-orders/{order_id}/execute")
async def execute_scheduled(room_id: str, order_id: str, body: Optional[ExecuteRequest] = None,
                            db: Session = Depends(get_db)):
    current_price = body.current_price if body else None
    logger.info("Execute requested for scheduled order %s (client_time=%s)", order_id, body.client_time if body else None)

    order = db.query(ScheduledOrder).filter(
        ScheduledOrder.id == order_id,
        ScheduledOrder.room_id == room_id,
        ScheduledOrder.status.in_(["pending", "watching"]),
    ).first()
    if order is None:
        return {"success": True, "message": "Order already executed or not found"}

    # Claim the order; a concurrent request that changed the status wins
    original_status = order.status
    claimed = db.query(ScheduledOrder).filter(
        ScheduledOrder.id == order_id, ScheduledOrder.status == original_status
    ).update({"status": "watching"}, synchronize_session=False)
    db.commit()
    if not claimed:
        return {"success": True, "message": "Order already being executed"}
    db.refresh(order)

    def revert():
        db.rollback()
        db.query(ScheduledOrder).filter(
            ScheduledOrder.id == order_id, ScheduledOrder.status == "watching"
        ).update({"status": original_status}, synchronize_session=False)
        db.commit()

    now = utcnow()
    price = current_price
    if price is None and (order.schedule_type == "price_based" or order.order_type == "market"):
        price = await fetch_last_price(order.symbol)

    time_ready, price_ready = is_ready(order, price, now)
    logger.info("Execution check for %s: time=%s price=%s", order_id, time_ready, price_ready)
    if not (time_ready or price_ready):
        revert()
        return error("Order not ready for execution", 400)

    try:
        result = execute_scheduled_order(db, order, price)
    except ScheduledExecutionError as e:
        logger.warning("Scheduled order %s failed: %s", order_id, e)
        revert()
        return error("Order execution failed", 500)
    except Exception:
        logger.exception("Scheduled order %s failed", order_id)
        revert()
        return error("Order execution failed", 500)

    open_order = result.pop("openOrder", None)
    order.status = "executed"
    order.executed_at = now
    order.execution_price = result.get("price")
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("DB commit failed executing scheduled order %s", order_id)
        return error(str(e), 500)

    if open_order is not None:
        await publish_change(room_id, "INSERT", None, open_order.to_dict())
    logger.info("Scheduled order %s executed at %s", order_id, result.get("price"))
    return {"success": True, "executionResult": result}


# -- change feed ---------------------------------------------------------------------

@router.websocket("/ws/open-orders")
async def open_orders_feed(websocket: WebSocket, room_id: str):
    await broadcaster.connect(room_id, websocket)
    try:
        while True:
            # Keep the connection open; clients only listen
            await websocket.receive_text()
    except WebSocketDisconnect:
        await broadcaster.disconnect(room_id, websocket)
