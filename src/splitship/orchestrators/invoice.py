"""Payment-order and invoice copy for the additional-shipping charge."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from splitship.adapters.gateway.protocol import DraftOrderLine, DraftOrderSpec
from splitship.orchestrators.payload import PAYMENT_ORDER_ATTR, PRIMARY_ORDER_ATTR

PAYMENT_ORDER_TAG = "additional-shipping-payment-order"
HOLD_REASON = "OTHER"
HOLD_NOTES = "Awaiting additional shipping payment."


@dataclass(frozen=True, slots=True)
class InvoiceCopy:
    subject: str
    message_html: str


def is_english(locale: str) -> bool:
    return "en" in locale.lower()


def invoice_copy(order_name: str, locale: str) -> InvoiceCopy:
    """Return the invoice email subject and body for ``locale``.

    English for any ``en`` locale, Simplified Chinese otherwise.
    """
    if is_english(locale):
        return InvoiceCopy(
            subject=(
                f"[Invoice] Order {order_name} Split Parcel Additional Shipping "
                "(Please complete within 24 hours)"
            ),
            message_html=(
                f"This invoice is associated with your original order: {order_name}."
                "<br><br>Important Notice: You selected \"Split Parcel\" at checkout "
                "to ensure safer shipping. This is an additional shipping fee "
                "invoice. Click the \"Pay Now\" button in the email to proceed to "
                "checkout, <br><strong>Please complete payment within 24 hours."
                "</strong><br><br>• If payment is completed: We will immediately "
                "split and ship the parcel.<br>• If payment is not completed: Your "
                "original order will be automatically canceled.<br><br>Thank you "
                "for your cooperation."
            ),
        )
    return InvoiceCopy(
        subject=(
            f"[付款单] 订单 {order_name} 拆分包裹补款通知 "
            "(请在24小时内完成)"
        ),
        message_html=(
            f"此账单关联您的原始订单：{order_name}。<br><br>"
            "重要提示：您在结账时选择了"
            "“拆分包裹”以获得更安全的运输保障。"
            "这是为您生成的额外运费账单。"
            "请点击邮件中的 “立即支付” 按钮进入结账页面，"
            "<br><strong>请务必在 24 小时内 完成支付。</strong>"
            "<br><br>• 如完成支付：我们将立即为您拆分包裹并发出。"
            "<br>• 如超时未付：系统将自动取消您的原始订单。"
            "<br><br>感谢您的配合。"
        ),
    )


def payment_line_title(order_name: str, parcel_count: int, level: str) -> str:
    return f"{order_name} ship{parcel_count} {level}檔"


def build_payment_draft(
    *,
    customer_id: str,
    primary_order_id: str,
    order_name: str,
    parcel_count: int,
    shipping_level: str,
    amount_cents: int,
    due_hours: int = 24,
    now: datetime | None = None,
) -> DraftOrderSpec:
    """Build the draft order that charges the extra parcels."""
    issued = now or datetime.now(UTC)
    return DraftOrderSpec(
        customer_id=customer_id,
        note=(
            f"Additional shipping for {order_name} "
            f"(Split into {parcel_count} parcels)"
        ),
        lines=(
            DraftOrderLine(
                title=payment_line_title(order_name, parcel_count, shipping_level),
                quantity=1,
                unit_price_cents=amount_cents,
            ),
        ),
        custom_attributes={
            PAYMENT_ORDER_ATTR: "true",
            PRIMARY_ORDER_ATTR: primary_order_id,
        },
        tags=(PAYMENT_ORDER_TAG,),
        due_at=(issued + timedelta(hours=due_hours)).isoformat(),
    )
