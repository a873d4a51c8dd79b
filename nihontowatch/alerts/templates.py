"""Email bodies for alert notifications."""

from html import escape
from typing import List, Optional
from urllib.parse import quote

from ..storage.models import Listing
from .notifier import Notification

# Listings shown inline in a digest; the rest are linked
MAX_DIGEST_ITEMS = 10

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #1a1a1a; background: #f5f5f0; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; background: #ffffff; }
    .brand { font-family: Georgia, serif; font-size: 20px; }
    .brand span { color: #b8860b; }
    .banner { background-color: #f0fdf4; padding: 16px; text-align: center; border-radius: 8px; }
    .item { border: 1px solid #e5e5e5; padding: 12px; border-radius: 8px; margin: 8px 0; }
    .meta { color: #666; font-size: 12px; }
    .cta { display: inline-block; padding: 12px 24px; background: #b8860b; color: #fff; text-decoration: none; border-radius: 6px; }
    .footer { text-align: center; color: #666; font-size: 12px; margin-top: 30px; }
"""


def format_price(value: Optional[float], currency: Optional[str]) -> str:
    if value is None:
        return "Ask"
    currency = currency or "JPY"
    symbols = {"JPY": "¥", "USD": "$", "EUR": "€", "GBP": "£"}
    symbol = symbols.get(currency, f"{currency} ")
    return f"{symbol}{value:,.0f}"


def _item_label(listing: Listing) -> str:
    label = listing.item_type.capitalize() if listing.item_type else "Item"
    if listing.cert_type:
        label += f" · {listing.cert_type}"
    return label


def _listing_block(listing: Listing) -> str:
    title = escape(listing.title or "Untitled")
    dealer = f'<div class="meta">From {escape(listing.dealer.name)}</div>' if listing.dealer else ""
    return f"""
        <div class="item">
            <a href="{escape(listing.url)}">{title}</a>
            <div class="meta">{escape(_item_label(listing))} · {format_price(listing.price_value, listing.price_currency)}</div>
            {dealer}
        </div>
    """


def _page(title: str, body: str, site_url: str, footer_links: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <title>{escape(title)}</title>
        <style>{_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <div class="brand">Nihonto<span>watch</span></div>
            {body}
            <div class="footer">
                {footer_links}
                <p><a href="{site_url}">Visit NihontoWatch</a></p>
            </div>
        </div>
    </body>
    </html>
    """


def price_drop_email(
    to: str,
    listing: Listing,
    old_price: float,
    new_price: float,
    percent_change: float,
    site_url: str,
    unsubscribe_url: Optional[str] = None,
) -> Notification:
    """Price drop alert for one listing."""
    percent = f"{abs(percent_change):.0f}"
    currency = listing.price_currency
    subject = f"Price drop: {listing.title or 'Untitled'} (-{percent}%)"

    body = f"""
        <h1>Price dropped {percent}%</h1>
        <p class="meta">An item you are watching is now cheaper.</p>
        <div class="banner">
            <s>{format_price(old_price, currency)}</s> &rarr; <strong>{format_price(new_price, currency)}</strong>
        </div>
        {_listing_block(listing)}
        <p style="text-align: center;"><a class="cta" href="{escape(listing.url)}">View listing</a></p>
    """
    footer = f'<p><a href="{site_url}/alerts">Manage alerts</a></p>'
    if unsubscribe_url:
        footer += f'<p><a href="{unsubscribe_url}">Unsubscribe</a></p>'

    text = (
        f"Price dropped {percent}% on {listing.title or 'Untitled'}\n"
        f"{format_price(old_price, currency)} -> {format_price(new_price, currency)}\n"
        f"{listing.url}\n\nManage alerts: {site_url}/alerts"
    )
    if unsubscribe_url:
        text += f"\nUnsubscribe: {unsubscribe_url}"

    return Notification(
        to=to,
        subject=subject,
        html=_page(subject, body, site_url, footer),
        text=text,
        url=unsubscribe_url,
    )


def back_in_stock_email(
    to: str, listing: Listing, site_url: str, unsubscribe_url: Optional[str] = None
) -> Notification:
    """Back-in-stock alert for one listing."""
    subject = f"Back in stock: {listing.title or 'Untitled'}"

    body = f"""
        <h1>Back in stock</h1>
        <p class="meta">An item you are watching is available again.</p>
        {_listing_block(listing)}
        <p style="text-align: center;"><a class="cta" href="{escape(listing.url)}">View listing</a></p>
    """
    footer = f'<p><a href="{site_url}/alerts">Manage alerts</a></p>'
    if unsubscribe_url:
        footer += f'<p><a href="{unsubscribe_url}">Unsubscribe</a></p>'

    text = f"{listing.title or 'Untitled'} is available again.\n{listing.url}"
    if unsubscribe_url:
        text += f"\n\nUnsubscribe: {unsubscribe_url}"

    return Notification(
        to=to,
        subject=subject,
        html=_page(subject, body, site_url, footer),
        text=text,
        url=unsubscribe_url,
    )


def saved_search_email(
    to: str,
    search_name: Optional[str],
    listings: List[Listing],
    frequency: str,
    criteria_summary: str,
    search_url: str,
    site_url: str,
    unsubscribe_search_url: Optional[str] = None,
    unsubscribe_all_url: Optional[str] = None,
) -> Notification:
    """Saved search digest (instant or daily)."""
    name = search_name or "your saved search"
    count = len(listings)
    noun = "item matches" if count == 1 else "items match"
    heading = "New matches found" if frequency == "instant" else "Your daily digest"
    subject = f"{count} new {'match' if count == 1 else 'matches'} for {name}"

    shown = listings[:MAX_DIGEST_ITEMS]
    more = count - len(shown)
    items = "".join(_listing_block(listing) for listing in shown)
    more_html = f'<p><a href="{search_url}">View {more} more</a></p>' if more > 0 else ""

    body = f"""
        <h1>{heading}</h1>
        <p>{count} {noun} <strong>{escape(name)}</strong></p>
        <p class="meta"><strong>Search criteria:</strong> {escape(criteria_summary)}</p>
        {items}
        {more_html}
        <p style="text-align: center;"><a class="cta" href="{search_url}">View all matches</a></p>
    """
    footer = f'<p><a href="{site_url}/saved">Manage saved searches</a></p>'
    if unsubscribe_search_url:
        footer += f'<p><a href="{unsubscribe_search_url}">Unsubscribe from this search</a>'
        if unsubscribe_all_url:
            footer += f' | <a href="{unsubscribe_all_url}">Unsubscribe from all</a>'
        footer += "</p>"

    lines = [heading, "", f'{count} {noun} "{name}"', f"Search criteria: {criteria_summary}", ""]
    for listing in shown:
        lines.append(f"- {listing.title or 'Untitled'} ({format_price(listing.price_value, listing.price_currency)})")
        lines.append(f"  {listing.url}")
    if more > 0:
        lines.append(f"\n...and {more} more: {search_url}")
    if unsubscribe_search_url:
        lines.append(f"\nUnsubscribe from this search: {unsubscribe_search_url}")
        if unsubscribe_all_url:
            lines.append(f"Unsubscribe from all: {unsubscribe_all_url}")

    return Notification(
        to=to,
        subject=subject,
        html=_page(subject, body, site_url, footer),
        text="\n".join(lines),
        url=unsubscribe_search_url,
    )


def search_results_url(site_url: str, criteria_url: str, listing_ids: List[int]) -> str:
    """Browse URL for the matched listings."""
    if not listing_ids:
        return f"{site_url}{criteria_url}"
    ids = quote(",".join(str(i) for i in listing_ids), safe=",")
    separator = "&" if "?" in criteria_url else "?"
    return f"{site_url}{criteria_url}{separator}listings={ids}"
