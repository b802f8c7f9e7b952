"""
Ordered candidate selectors (targets) for the ticketing storefront.

Each key names one logical UI target; its list is tried top to bottom and the
first interactable match wins. Update these when the site changes its markup.
"""

from typing import Dict, List

from ticketwar.locator import Candidates


SELECTORS: Dict[str, List[str]] = {
    # ===== Event page =====
    "buy_button": [
        'button:has-text("Beli Tiket")',
        'a:has-text("Beli Tiket")',
        '[class*="buy"]:has-text("Beli")',
        ".btn-buy-ticket",
        'button:has-text("Buy Ticket")',
        '[data-action="buy-ticket"]',
    ],
    # ===== Waiting room indicators (status only) =====
    "queue_position": [
        ".queue-position",
        ".position",
        '[class*="position"]',
    ],
    "queue_eta": [
        ".estimated-time",
        ".eta",
        '[class*="waiting-time"]',
    ],
    "queue_progress": [
        ".queue-progress",
        ".progress",
        '[class*="progress"]',
    ],
    # ===== Ticket categories =====
    # Marks the moment the ticket widget has rendered
    "category_ready": [
        'button:has-text("Select")',
        'button:has-text("Pilih")',
        "text=Select",
    ],
    "category_row": [
        ".ticket-item",
        ".ticket-category-item",
        '[class*="ticket-row"]',
        'div:has(> button:has-text("Select"))',
        'div:has(> button:has-text("Pilih"))',
        '[class*="ticket-type"]',
        ".card",
    ],
    "category_select": [
        'button:has-text("Select")',
        'button:has-text("Pilih")',
        ".btn-select",
        '[class*="select-ticket"]',
        'button[class*="select"]',
        "button",
    ],
    "sold_out_marker": [
        ".sold-out",
        '[class*="sold-out"]',
        '[class*="soldout"]',
    ],
    # Page-wide select controls, positional fallback only
    "category_any_select": [
        'button:has-text("Select")',
        'button:has-text("Pilih")',
        '.btn-primary:has-text("Select")',
        'button[class*="select"]',
        ".ticket-item button",
        ".card button",
    ],
    # ===== Quantity =====
    "quantity_input": [
        'input[type="number"]',
        ".quantity-input",
        '[class*="quantity"] input',
        'input[name*="qty"]',
    ],
    "quantity_plus": [
        ".qty-plus",
        ".btn-plus",
        '[class*="plus"]',
        'button:has-text("+")',
    ],
    "order_button": [
        'button:has-text("Order Now")',
        'button:has-text("Pesan Sekarang")',
        'button:has-text("Order")',
        'button:has-text("Checkout")',
        'button:has-text("Proceed")',
        'button:has-text("Pesan")',
    ],
    # ===== Identity form =====
    "field_name": [
        'input[name="firstname"]',
        'input[name="name"]',
        'input[name="fullname"]',
        'input[name="full_name"]',
        'input[name*="nama"]',
        'input[placeholder*="Nama"]',
        'input[placeholder*="Name"]',
        'input[id*="name"]',
        'input[id*="nama"]',
    ],
    "field_national_id": [
        'input[name="identity_id"]',
        'input[name="nik"]',
        'input[name*="identity"]',
        'input[name*="nik"]',
        'input[name*="ktp"]',
        'input[placeholder*="NIK"]',
        'input[placeholder*="KTP"]',
        'input[placeholder*="Identitas"]',
        'input[id*="nik"]',
        'input[id*="identity"]',
    ],
    "field_email": [
        'input[name="email"]',
        'input[type="email"]',
        'input[id="email"]',
        'input[name*="email"]',
        'input[placeholder*="Email"]',
        'input[id*="email"]',
    ],
    "field_phone": [
        'input[name="phone"]',
        'input[name="phoneNumber"]',
        'input[name="handphone"]',
        'input[name*="phone"]',
        'input[name*="telepon"]',
        'input[type="tel"]',
        'input[placeholder*="Telepon"]',
        'input[placeholder*="Phone"]',
    ],
    # Unnamed text inputs, positional phone fallback
    "text_inputs": [
        'input[type="text"]:visible',
    ],
    "field_domicile": [
        'input[name*="domisili"]',
        'input[name*="domicile"]',
        'input[name*="city"]',
        'input[placeholder*="Domisili"]',
        'input[placeholder*="Kota"]',
    ],
    "radio_inputs": [
        'input[type="radio"]:visible',
    ],
    "dob_trigger": [
        'div:text-is("Select Date of Birth")',
        'text="Select Date of Birth"',
        'text="Pilih Tanggal Lahir"',
        'input[name*="dob"]',
        'input[name*="birth"]',
        'input[placeholder*="Tanggal Lahir"]',
        'input[placeholder*="Date of Birth"]',
    ],
    "dob_popover": [
        ".datepicker-popover",
        '[role="dialog"]',
        ".calendar",
        '[class*="popover"]',
    ],
    "dob_day_cells": [
        '[role="gridcell"]:not([aria-disabled="true"])',
        ".calendar-day:not(.disabled)",
        "td:not(.disabled)",
    ],
    "terms_checkbox": [
        'input[type="checkbox"][name*="term"]',
        'input[type="checkbox"][name*="agree"]',
        '[class*="terms"] input[type="checkbox"]',
        'input[type="checkbox"]',
    ],
    # ===== Checkout =====
    "next_button": [
        'button:has-text("Lanjutkan")',
        'button:has-text("Selanjutnya")',
        'button:has-text("Next")',
        'button:has-text("Continue")',
        ".btn-next",
        ".btn-continue",
        '[class*="next"]',
        'button[type="submit"]',
    ],
    "pay_button": [
        'button:has-text("Bayar")',
        'button:has-text("Bayar Sekarang")',
        'button:has-text("Pay")',
        'button:has-text("Pay Now")',
        ".btn-pay",
        '[class*="pay"]',
    ],
    "payment_surface": [
        ".payment-method",
        '[class*="payment-option"]',
        '[class*="payment-method"]',
    ],
    # ===== Payment =====
    "checkboxes": [
        'input[type="checkbox"]:visible',
    ],
    "pay_now_button": [
        'button:has-text("Pay Now")',
        'button:has-text("Bayar Sekarang")',
        'button:has-text("Bayar")',
        'button:has-text("Process Payment")',
        'button:has-text("Confirm")',
        'button:has-text("Konfirmasi")',
        'button[type="submit"]:visible',
        "button.btn-primary:visible",
        'button[class*="pay"]:visible',
        'button[class*="submit"]:visible',
    ],
    # ===== Payment reference =====
    "reference_label": [
        'div:has-text("Virtual Account") >> xpath=following-sibling::*[1]',
        'span:has-text("Virtual Account") >> xpath=following-sibling::*[1]',
        'label:has-text("Virtual Account") >> xpath=following-sibling::*[1]',
        'p:has-text("Nomor VA")',
        'div:has-text("Nomor VA")',
        'span:has-text("No. Virtual Account")',
        '[class*="copy"]:visible',
        'button:has-text("Copy"):visible',
        '[class*="payment-detail"]:visible',
        '[class*="account-number"]:visible',
        '[class*="va-number"]:visible',
    ],
    "reference_containers": [
        "main:visible",
        "article:visible",
        "section:visible",
        '[role="main"]:visible',
        ".content:visible",
    ],
}


def target(key: str) -> Candidates:
    """Candidates for a named target in SELECTORS."""
    return Candidates.of(key, SELECTORS[key])
