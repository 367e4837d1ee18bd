import asyncio
from decimal import Decimal

from storefront.core.config import settings
from storefront.models.invoice import InvoicePaymentStatus
from storefront.models.offline_sale import GstType
from storefront.models.order import OrderStatus, SaleType
from storefront.schemas.offline_sale import OfflineSaleCreate
from storefront.services import offline_sales


def _ticket(**overrides) -> OfflineSaleCreate:
    data = {
        "customerName": "Asha",
        "customerPhone": "9876543210",
        "items": [{"name": "Gift hamper", "quantity": 1, "price": "1000"}],
        "totalAmount": "1000",
        "discount": "100",
        "gstType": "gst",
        "paymentMethod": "upi",
    }
    data.update(overrides)
    return OfflineSaleCreate.model_validate(data)


def test_gst_ticket_is_delivered_and_invoiced(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(settings, "upi_id", "store@upi")

    async def run():
        async with session_factory() as session:
            return await offline_sales.create_offline_sale(session, _ticket())

    placement = asyncio.run(run())
    sale, order, invoice = placement.sale, placement.order, placement.invoice

    assert order.status == OrderStatus.delivered
    assert order.sale_type == SaleType.offline
    assert order.total_amount == Decimal("900.00")
    assert order.tax_amount == Decimal("0.00")
    assert order.coupon_discount == Decimal("0.00")
    assert order.shipping_address["address_line1"] == offline_sales.OFFLINE_ADDRESS_LINE

    assert placement.invoice_status == "issued"
    assert invoice is not None
    assert invoice.sale_type == SaleType.offline
    assert invoice.total_amount == Decimal("900.00")
    assert invoice.tax_amount == Decimal("0.00")
    assert invoice.payment_status == InvoicePaymentStatus.pending
    assert invoice.upi_id == "store@upi"
    assert invoice.upi_qr_code.startswith("data:image/png;base64,")
    assert invoice.notes == offline_sales.OFFLINE_DEFAULT_NOTES

    assert sale.invoice_number == invoice.invoice_number
    assert sale.order_id == order.id
    assert sale.final_amount == Decimal("900.00")


def test_marked_paid_ticket_is_settled_on_issue(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            return await offline_sales.create_offline_sale(session, _ticket(markedPaid=True))

    invoice = asyncio.run(run()).invoice
    assert invoice is not None
    assert invoice.payment_status == InvoicePaymentStatus.paid
    assert invoice.payment_date is not None


def test_non_gst_ticket_skips_invoice(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            return await offline_sales.create_offline_sale(session, _ticket(gstType="non-gst"))

    placement = asyncio.run(run())
    assert placement.invoice is None
    assert placement.invoice_status == "not_required"
    assert placement.sale.invoice_number is None
    assert placement.order.invoice_id is None


def test_non_gst_ticket_invoiced_when_enabled(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(settings, "offline_invoice_non_gst", True)

    async def run():
        async with session_factory() as session:
            return await offline_sales.create_offline_sale(session, _ticket(gstType="non-gst"))

    placement = asyncio.run(run())
    assert placement.invoice is not None
    assert placement.sale.gst_type == GstType.non_gst


def test_operator_final_amount_is_kept(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            return await offline_sales.create_offline_sale(session, _ticket(finalAmount="899"))

    placement = asyncio.run(run())
    assert placement.order.total_amount == Decimal("899.00")
    assert placement.invoice.total_amount == Decimal("899.00")
    assert placement.sale.final_amount == Decimal("899.00")


def test_list_offline_sales_filters_by_gst_and_search(session_factory) -> None:
    async def run():
        async with session_factory() as session:
            await offline_sales.create_offline_sale(session, _ticket())
            await offline_sales.create_offline_sale(
                session, _ticket(customerName="Ravi", customerPhone="5550001", gstType="non-gst")
            )
            gst_only, gst_total = await offline_sales.list_offline_sales(session, gst_type=GstType.gst)
            found, found_total = await offline_sales.list_offline_sales(session, q="ravi")
            return gst_only, gst_total, found, found_total

    gst_only, gst_total, found, found_total = asyncio.run(run())
    assert gst_total == 1
    assert gst_only[0].customer_name == "Asha"
    assert found_total == 1
    assert found[0].customer_phone == "5550001"
