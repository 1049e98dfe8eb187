from __future__ import annotations

import re

from bs4 import BeautifulSoup

from receipt_reconciler.modules.extraction.decoders import DecodedArtifact, table_text
from receipt_reconciler.modules.extraction.fields import parse_currency
from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    PRICE,
    WORD_DATE,
    LineItem,
    ParsedReceipt,
    VendorParser,
    compile_patterns,
    is_summary_line,
)

_ORDER_ID = r"(\d{3}-\d{7}-\d{7})"
_PRICE_RE = re.compile(PRICE)
_TABLE_TOTAL_RE = re.compile(r"order\s*total[:\s]*" + AMOUNT, re.I)
_TABLE_ORDER_RE = re.compile(r"order\s*#?\s*" + _ORDER_ID, re.I)
_SKIP_DESCRIPTION_RE = re.compile(r"^(?:order\b|payment\b)", re.I)

MAX_ITEMS = 20


class AmazonParser(VendorParser):
    vendor_id = "amazon"
    name = "amazon"

    total_patterns = compile_patterns(
        r"order\s*total[:\s]*" + AMOUNT,
        r"grand\s*total[:\s]*" + AMOUNT,
        r"total\s*for\s*this\s*order[:\s]*" + AMOUNT,
    )
    subtotal_patterns = compile_patterns(r"(?:items?\s*)?sub\s*total[:\s]*" + AMOUNT)
    tax_patterns = compile_patterns(r"(?:estimated\s*)?\btax[:\s]*" + AMOUNT)
    shipping_patterns = compile_patterns(r"shipping(?:\s*&\s*handling)?[:\s]*" + AMOUNT)
    date_patterns = compile_patterns(
        r"order\s*placed[:\s]*" + WORD_DATE,
        r"ordered?\s*on[:\s]*" + WORD_DATE,
        WORD_DATE,
    )
    order_patterns = compile_patterns(r"order\s*(?:#|number)?[:\s]*" + _ORDER_ID)
    card_patterns = compile_patterns(r"(?:card\s*)?ending\s*in\s*(\d{4})")

    def extract_line_items(self, text: str) -> list[LineItem]:
        items: list[LineItem] = []
        lines = [ln.strip() for ln in (text or "").splitlines()]
        for i, line in enumerate(lines):
            if not line:
                continue
            m = _PRICE_RE.search(line)
            if not m:
                continue
            price = parse_currency(m.group(1))
            description = (line[: m.start()] + line[m.end() :]).strip()
            # Price on its own line: the title is the line above.
            if len(description) < 5 and i > 0:
                description = lines[i - 1]
            if is_summary_line(description) or _SKIP_DESCRIPTION_RE.match(description):
                continue
            if len(description) > 5 and price is not None:
                items.append(LineItem(description=description[:100], total_price=price))
            if len(items) >= MAX_ITEMS:
                break
        return items

    def parse_html(self, markup: str, artifact: DecodedArtifact) -> ParsedReceipt | None:
        result = self.extract(artifact.text)

        for table in artifact.tables:
            txt = table_text(table)
            m = _TABLE_TOTAL_RE.search(txt)
            if m and parse_currency(m.group(1)) is not None:
                result.total = parse_currency(m.group(1))
            m = _TABLE_ORDER_RE.search(txt)
            if m:
                result.order_number = m.group(1)

        if result.total is None:
            result.total = artifact.labeled_amounts.get("total")
        if result.transaction_date is None and artifact.candidate_dates:
            result.transaction_date = artifact.candidate_dates[0]
        result.card_last4 = result.card_last4 or artifact.order_info.get("card_last4")

        html_items = self._html_line_items(markup)
        if html_items:
            result.line_items = html_items
        return self.finish(result)

    def _html_line_items(self, markup: str) -> list[LineItem]:
        soup = BeautifulSoup(markup or "", "html.parser")
        items: list[LineItem] = []
        for row in soup.select("table tr"):
            cells = row.find_all("td", recursive=False) or row.find_all("td")
            if len(cells) < 2:
                continue
            description: str | None = None
            price = None
            for cell in cells:
                text = re.sub(r"\s+", " ", cell.get_text(" ")).strip()
                m = _PRICE_RE.search(text)
                if m:
                    price = parse_currency(m.group(1))
                elif 10 < len(text) < 200:
                    description = text
            if not description:
                # Product rows often carry the title only as image alt text.
                img = row.find("img", alt=True)
                if img and img["alt"].strip():
                    description = img["alt"].strip()
            if description and price is not None and not is_summary_line(description):
                items.append(LineItem(description=description[:100], total_price=price))
            if len(items) >= MAX_ITEMS:
                break
        return items
