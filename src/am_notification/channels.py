"""Optional out-of-band channels: email (SendGrid v3) and SMS (Twilio).

Both are plain HTTP calls through httpx. A channel whose credentials are not
configured is skipped; a send that fails is logged and dropped. Contact
details come from a ContactDirectory. With USER_DIRECTORY_URL set it is the
identity provider's admin user API (GoTrue / Supabase Auth); without it the
directory knows nobody and receipts are skipped.
"""

import html
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from config.settings import Settings
from src.am_common.cents import cents_to_display

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


@dataclass(frozen=True)
class Contact:
    email: str | None = None
    phone: str | None = None


class ContactDirectory(Protocol):
    async def lookup(self, user_id: str) -> Contact | None: ...

    async def close(self) -> None: ...


class NullContactDirectory:
    """Knows no contact details; every lookup misses."""

    async def lookup(self, user_id: str) -> Contact | None:
        return None

    async def close(self) -> None:
        return None


class AuthAdminContactDirectory:
    """Reads email and phone from GET {base_url}/admin/users/{id} with a service key.

    A miss or a failed call is logged and treated as an unknown user.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    async def lookup(self, user_id: str) -> Contact | None:
        try:
            resp = await self._client.get(f"/admin/users/{user_id}")
        except httpx.HTTPError as exc:
            logger.warning("Contact lookup for %s failed: %s", user_id, exc)
            return None
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            logger.warning("Contact lookup for %s returned %s", user_id, resp.status_code)
            return None
        user = resp.json()
        email = user.get("email") or None
        phone = user.get("phone") or (user.get("user_metadata") or {}).get("phone") or None
        if email is None and phone is None:
            return None
        return Contact(email=email, phone=phone)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_contact_directory(config: Settings) -> ContactDirectory:
    if not config.USER_DIRECTORY_URL:
        return NullContactDirectory()
    return AuthAdminContactDirectory(
        config.USER_DIRECTORY_URL,
        api_key=config.USER_DIRECTORY_KEY or config.REST_STORE_KEY,
    )


def build_invoice_html(
    auction_title: str,
    amount_cents: int,
    buyer: str,
    seller: str,
    auction_id: str,
    app_name: str = "Auction Marketplace",
) -> str:
    """Minimal invoice body shared by the buyer and seller emails."""
    esc = html.escape
    return (
        "<div style=\"font-family:sans-serif;max-width:480px\">"
        f"<h2>{esc(app_name)} invoice</h2>"
        "<table cellpadding=\"4\">"
        f"<tr><td>Item</td><td>{esc(auction_title)}</td></tr>"
        f"<tr><td>Auction</td><td>{esc(auction_id)}</td></tr>"
        f"<tr><td>Buyer</td><td>{esc(buyer)}</td></tr>"
        f"<tr><td>Seller</td><td>{esc(seller)}</td></tr>"
        f"<tr><td><b>Total</b></td><td><b>{cents_to_display(amount_cents)}</b></td></tr>"
        "</table></div>"
    )


class OutboundChannels:
    """Sends the closing-sale emails and texts. Every method swallows its errors."""

    def __init__(
        self,
        config: Settings,
        directory: ContactDirectory | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._directory = directory or NullContactDirectory()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=10.0)

    @property
    def directory_configured(self) -> bool:
        return not isinstance(self._directory, NullContactDirectory)

    @property
    def email_configured(self) -> bool:
        return bool(self._config.SENDGRID_API_KEY and self._config.SENDGRID_FROM_EMAIL)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self._config.TWILIO_ACCOUNT_SID
            and self._config.TWILIO_AUTH_TOKEN
            and self._config.TWILIO_FROM
        )

    async def send_email(self, to: str, subject: str, text: str, html_body: str | None = None) -> bool:
        if not self.email_configured:
            return False
        content = [{"type": "text/plain", "value": text}]
        if html_body:
            content.append({"type": "text/html", "value": html_body})
        try:
            resp = await self._client.post(
                SENDGRID_SEND_URL,
                headers={"Authorization": f"Bearer {self._config.SENDGRID_API_KEY}"},
                json={
                    "personalizations": [{"to": [{"email": to}]}],
                    "from": {"email": self._config.SENDGRID_FROM_EMAIL},
                    "subject": subject,
                    "content": content,
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Email to %s failed: %s", to, exc)
            return False
        return True

    async def send_sms(self, to: str, body: str) -> bool:
        if not self.sms_configured:
            return False
        try:
            resp = await self._client.post(
                TWILIO_MESSAGES_URL.format(sid=self._config.TWILIO_ACCOUNT_SID),
                auth=(self._config.TWILIO_ACCOUNT_SID, self._config.TWILIO_AUTH_TOKEN),
                data={"To": to, "From": self._config.TWILIO_FROM, "Body": body},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("SMS to %s failed: %s", to, exc)
            return False
        return True

    async def send_sale_receipts(
        self,
        auction_id: str,
        auction_title: str,
        buyer_id: str,
        seller_id: str,
        amount_cents: int,
        via_counter: bool = False,
    ) -> None:
        """Email both parties an invoice and text them a one-liner."""
        if not (self.email_configured or self.sms_configured):
            return
        try:
            buyer = await self._directory.lookup(buyer_id) or Contact()
            seller = await self._directory.lookup(seller_id) or Contact()
        except Exception:  # noqa: BLE001
            logger.warning("Contact lookup failed for auction %s", auction_id, exc_info=True)
            return

        price = cents_to_display(amount_cents)
        invoice = build_invoice_html(
            auction_title,
            amount_cents,
            buyer.email or "buyer",
            seller.email or "seller",
            auction_id,
            app_name=self._config.APP_NAME,
        )
        if via_counter:
            buyer_subject, buyer_text = f"Offer accepted: {auction_title}", f"Seller accepted at {price}"
            seller_subject, seller_text = f"You accepted: {auction_title}", f"You accepted the offer at {price}"
            buyer_sms = f"Seller accepted your offer for {auction_title} at {price}"
            seller_sms = f"You accepted the offer for {auction_title} at {price}"
        else:
            buyer_subject, buyer_text = f"You won: {auction_title}", f"You won auction {auction_title} for {price}"
            seller_subject, seller_text = f"Sold: {auction_title}", f"Your auction {auction_title} sold for {price}"
            buyer_sms = f"You won {auction_title} for {price}"
            seller_sms = f"Sold {auction_title} for {price}"

        if buyer.email:
            await self.send_email(buyer.email, buyer_subject, buyer_text, invoice)
        if seller.email:
            await self.send_email(seller.email, seller_subject, seller_text, invoice)
        if buyer.phone:
            await self.send_sms(buyer.phone, buyer_sms)
        if seller.phone:
            await self.send_sms(seller.phone, seller_sms)

    async def close(self) -> None:
        await self._directory.close()
        if self._owns_client:
            await self._client.aclose()
