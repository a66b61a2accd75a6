import html
import logging
from typing import Any, Dict, List

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import FSInputFile, Message

from storefront.bot.keyboards import main_kb
from storefront.config import settings
from storefront.constants import ORDER_STATUSES
from storefront.db.sqlite import (
    Database,
    db_status,
    get_order,
    list_orders,
    low_stock_products,
    record_audit,
    update_order,
)
from storefront.errors import StoreError
from storefront.services.backup import make_backup
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

router = Router()

DEFAULT_ORDERS = 5


def _is_admin(message: Message) -> bool:
    try:
        return int(message.from_user.id) == int(settings.admin_id)
    except (AttributeError, TypeError, ValueError):
        return False


def _actor(message: Message) -> str:
    return f"tg:{message.from_user.id}"


def status_text(status: Dict[str, Any]) -> str:
    m = status["metrics"]
    lines = [
        f"<b>DB {html.escape(status['status'])}</b> ({html.escape(str(status['timestamp']))})",
        f"users: {m['users']}  products: {m['products']}",
        f"orders: {m['orders']}  order items: {m['orderItems']}",
        f"audit events: {m['auditEvents']}",
    ]
    low = status["lowStockProducts"]
    if low:
        lines.append("")
        lines.append(f"⚠️ low stock: {len(low)}")
    return "\n".join(lines)


def low_stock_text(rows: List[Dict[str, Any]], threshold: int) -> str:
    if not rows:
        return f"✅ No products below {threshold} in stock"
    lines = [f"<b>Stock below {threshold}</b>:"]
    for r in rows:
        lines.append(f"  • {html.escape(r['name'])} | {r['stock']}")
    return "\n".join(lines)


def order_line(order: Dict[str, Any]) -> str:
    return (
        f"<code>{html.escape(order['orderNumber'])}</code> {html.escape(order['status'])} | "
        f"{html.escape(order['customerName'])} | {money(order['totalAmount'])}"
    )


def orders_text(orders: List[Dict[str, Any]]) -> str:
    if not orders:
        return "(no orders)"
    return "\n".join(order_line(o) for o in orders)


def order_text(order: Dict[str, Any]) -> str:
    lines = [
        order_line(order),
        f"id: <code>{html.escape(order['id'])}</code>",
        f"{html.escape(order['customerEmail'])}",
        f"{html.escape(order['address'])}, {html.escape(order['city'])}, {html.escape(order['country'])}",
        "",
    ]
    for it in order["items"]:
        lines.append(f"  • {html.escape(it['name'])} × {it['quantity']} = {money(it['lineTotal'])}")
    return "\n".join(lines)


@router.message(Command("start"))
async def cmd_start(message: Message):
    if not _is_admin(message):
        return
    await message.answer("✅ Storefront admin bot is running", reply_markup=main_kb())


@router.message(Command("help"))
async def cmd_help(message: Message):
    if not _is_admin(message):
        return

    text = (
        "<b>Storefront admin — commands</b>\n\n"
        "/start — start\n"
        "/help — this help\n"
        "/ping — check\n"
        "/dbstatus — database status and counts\n"
        "/lowstock [THRESHOLD] — products running out\n"
        f"/orders [N] — last N orders (default {DEFAULT_ORDERS})\n"
        "/order ID — order details\n"
        "/order_status ID STATUS — change status "
        f"({', '.join(ORDER_STATUSES)})\n"
        "/backup — zip of the database + order PDFs\n"
    )
    await message.answer(text)


@router.message(Command("ping"))
async def cmd_ping(message: Message):
    if not _is_admin(message):
        return
    await message.answer("pong ✅")


@router.message(Command("dbstatus"))
async def cmd_dbstatus(message: Message, db: Database):
    if not _is_admin(message):
        return
    if not db.health_check():
        await message.answer("❌ Database is not reachable")
        return
    await message.answer(status_text(db_status(db, settings.low_stock_threshold)))


@router.message(Command("lowstock"))
async def cmd_lowstock(message: Message, command: CommandObject, db: Database):
    if not _is_admin(message):
        return
    threshold = settings.low_stock_threshold
    if command.args:
        try:
            threshold = int(command.args.strip())
        except ValueError:
            await message.answer("Usage: /lowstock [THRESHOLD]")
            return
    await message.answer(low_stock_text(low_stock_products(db, threshold, limit=50), threshold))


@router.message(Command("orders"))
async def cmd_orders(message: Message, command: CommandObject, db: Database):
    if not _is_admin(message):
        return
    n = DEFAULT_ORDERS
    if command.args:
        try:
            n = max(1, int(command.args.strip()))
        except ValueError:
            await message.answer("Usage: /orders [N]")
            return
    await message.answer(orders_text(list_orders(db, limit=n)))


@router.message(Command("order"))
async def cmd_order(message: Message, command: CommandObject, db: Database):
    if not _is_admin(message):
        return
    if not command.args:
        await message.answer("Usage: /order ID")
        return
    order = get_order(db, command.args.strip())
    if not order:
        await message.answer("❌ Order not found")
        return
    await message.answer(order_text(order))


@router.message(Command("order_status"))
async def cmd_order_status(message: Message, command: CommandObject, db: Database):
    if not _is_admin(message):
        return
    parts = (command.args or "").split()
    if len(parts) != 2:
        await message.answer("Usage: /order_status ID STATUS")
        return
    order_id, status = parts[0], parts[1].upper()
    try:
        order = update_order(db, order_id, {"status": status})
    except StoreError as e:
        await message.answer(f"❌ {html.escape(e.message)}")
        return
    record_audit(db, _actor(message), "order.update", True, f"{order_id} status={status}")
    await message.answer(f"✅ {order_line(order)}")


@router.message(Command("backup"))
async def cmd_backup(message: Message, db: Database):
    if not _is_admin(message):
        return
    try:
        file_path = make_backup(db, settings.backup_dir, settings.export_dir)
    except (OSError, StoreError) as e:
        logger.exception("backup failed")
        await message.answer(f"❌ Backup failed: {html.escape(str(e))}")
        return
    await message.answer_document(FSInputFile(file_path))
