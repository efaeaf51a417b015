"""
Receipt translations for English, Sinhala and Tamil.

Keys missing from a language fall back to English, then to the key
itself.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List
import logging

from app.common.utils import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "english"

TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "english": {
        "company_name": "Lanka POS Restaurant",
        "company_address": "Your Address Here",
        "company_phone": "Tel: +94 XX XXX XXXX",
        "company_email": "Email: info@lankapos.lk",
        "vat_number": "VAT No: XXXXXXXXX",

        "receipt_title": "TAX INVOICE",
        "duplicate_receipt": "DUPLICATE RECEIPT",
        "refund_receipt": "REFUND RECEIPT",
        "digital_receipt": "DIGITAL RECEIPT",

        "dine-in": "Dine-In",
        "takeaway": "Takeaway",
        "delivery": "Delivery",

        "receipt_no": "Receipt No",
        "sale_no": "Sale No",
        "date": "Date",
        "time": "Time",
        "table_no": "Table No",
        "cashier": "Cashier",
        "order_type": "Order Type",
        "customer": "Customer",

        "item": "Item",
        "qty": "Qty",
        "price": "Price",
        "total": "Total",

        "subtotal": "Subtotal",
        "vat": "VAT",
        "vat_rate": "VAT Rate",
        "service_charge": "Service Charge",
        "discount": "Discount",
        "total_amount": "Total Amount",
        "amount_paid": "Amount Paid",
        "change": "Change",

        "payment_method": "Payment Method",
        "cash": "Cash",
        "card": "Card",
        "mobile": "Mobile Payment",
        "other": "Other",

        "thank_you": "Thank You! Come Again!",
        "powered_by": "Powered by Lanka POS",
        "terms_and_conditions": "Terms & Conditions Apply",
        "no_refund": "No refunds or exchanges without receipt",

        "customer_copy": "Customer Copy",
        "merchant_copy": "Merchant Copy",
        "signature": "Signature",

        "paid": "PAID",
        "refunded": "REFUNDED",
        "voided": "VOIDED",
    },
    "sinhala": {
        "company_name": "ලංකා පොස් අවන්හල",
        "company_address": "ඔබේ ලිපිනය මෙහි",
        "company_phone": "දුරකථන: +94 XX XXX XXXX",
        "company_email": "විද්‍යුත් තැපෑල: info@lankapos.lk",
        "vat_number": "වැට් අංකය: XXXXXXXXX",

        "receipt_title": "බදු ඉන්වොයිසිය",
        "duplicate_receipt": "අනුපිටපත් රිසිට්පත",
        "refund_receipt": "ආපසු ගෙවීමේ රිසිට්පත",
        "digital_receipt": "ඩිජිටල් රිසිට්පත",

        "dine-in": "අවන්හලේ ආහාර ගැනීම",
        "takeaway": "රැගෙන යාම",
        "delivery": "බෙදාහැරීම",

        "receipt_no": "රිසිට්පත් අංකය",
        "sale_no": "විකුණුම් අංකය",
        "date": "දිනය",
        "time": "වේලාව",
        "table_no": "මේස අංකය",
        "cashier": "අයකැමි",
        "order_type": "ඇණවුම් වර්ගය",

        "item": "අයිතමය",
        "qty": "ප්‍රමාණය",
        "price": "මිල",
        "total": "එකතුව",

        "subtotal": "උප එකතුව",
        "vat": "වැට්",
        "vat_rate": "වැට් අනුපාතය",
        "discount": "වට්ටම",
        "total_amount": "මුළු එකතුව",
        "amount_paid": "ගෙවූ මුදල",
        "change": "ඉතිරිය",

        "payment_method": "ගෙවීමේ ක්‍රමය",
        "cash": "මුදල්",
        "card": "කාඩ්පත",
        "mobile": "ජංගම ගෙවීම",
        "other": "වෙනත්",

        "thank_you": "ස්තූතියි! නැවත පැමිණෙන්න!",
        "powered_by": "බලගැන්වීම - ලංකා පොස්",
        "terms_and_conditions": "නියම සහ කොන්දේසි අදාළ වේ",
        "no_refund": "රිසිට්පත නොමැතිව ආපසු ගෙවීම් හෝ හුවමාරු නොකරන්න",

        "customer_copy": "ගනුදෙනුකරුගේ පිටපත",
        "merchant_copy": "වෙළඳසැලේ පිටපත",
        "signature": "අත්සන",

        "paid": "ගෙවූ",
        "refunded": "ආපසු ගෙවූ",
        "voided": "අවලංගු කරන ලද",
    },
    "tamil": {
        "company_name": "லங்கா பிஓஎஸ் உணவகம்",
        "company_address": "உங்கள் முகவரி இங்கே",
        "company_phone": "தொலைபேசி: +94 XX XXX XXXX",
        "company_email": "மின்னஞ்சல்: info@lankapos.lk",
        "vat_number": "வாட் எண்: XXXXXXXXX",

        "receipt_title": "வரி விலைப்பட்டியல்",
        "duplicate_receipt": "நகல் ரசீது",
        "refund_receipt": "திரும்பப்பெறுதல் ரசீது",
        "digital_receipt": "டிஜிட்டல் ரசீது",

        "dine-in": "உணவகத்தில் சாப்பிடுதல்",
        "takeaway": "எடுத்துச் செல்",
        "delivery": "விநியோகம்",

        "receipt_no": "ரசீது எண்",
        "sale_no": "விற்பனை எண்",
        "date": "தேதி",
        "time": "நேரம்",
        "table_no": "மேஜை எண்",
        "cashier": "காசாளர்",
        "order_type": "ஆர்டர் வகை",

        "item": "பொருள்",
        "qty": "அளவு",
        "price": "விலை",
        "total": "மொத்தம்",

        "subtotal": "துணை மொத்தம்",
        "vat": "வாட்",
        "vat_rate": "வாட் விகிதம்",
        "discount": "தள்ளுபடி",
        "total_amount": "மொத்த தொகை",
        "amount_paid": "செலுத்திய தொகை",
        "change": "மீதி",

        "payment_method": "பணம் செலுத்தும் முறை",
        "cash": "பணம்",
        "card": "அட்டை",
        "mobile": "மொபைல் பணம்",
        "other": "மற்றவை",

        "thank_you": "நன்றி! மீண்டும் வாருங்கள்!",
        "powered_by": "இயக்குவது - லங்கா பிஓஎஸ்",
        "terms_and_conditions": "விதிமுறைகள் மற்றும் நிபந்தனைகள் பொருந்தும்",
        "no_refund": "ரசீது இல்லாமல் பணத்தைத் திரும்பப் பெறுதல் அல்லது பரிமாற்றம் இல்லை",

        "customer_copy": "வாடிக்கையாளர் நகல்",
        "merchant_copy": "வணிகர் நகல்",
        "signature": "கையொப்பம்",

        "paid": "செலுத்தப்பட்டது",
        "refunded": "திரும்பப் பெறப்பட்டது",
        "voided": "ரத்து செய்யப்பட்டது",
    },
}

CURRENCY_PREFIX = {
    "english": "Rs.",
    "sinhala": "රු.",
    "tamil": "ரூ.",
}


def resolve_language(language: str) -> str:
    lang = (language or DEFAULT_LANGUAGE).lower()
    if lang not in TRANSLATIONS:
        logger.warning(f"Language '{language}' not found, defaulting to English")
        return DEFAULT_LANGUAGE
    return lang


def translate(language: str, key: str) -> str:
    lang = resolve_language(language)
    return TRANSLATIONS[lang].get(key) or TRANSLATIONS[DEFAULT_LANGUAGE].get(key) or key


def language_table(language: str) -> Dict[str, str]:
    """Full table for a language with English filling any gaps."""
    table = dict(TRANSLATIONS[DEFAULT_LANGUAGE])
    table.update(TRANSLATIONS[resolve_language(language)])
    return table


def available_languages() -> List[str]:
    return list(TRANSLATIONS.keys())


def format_currency(amount, language: str = DEFAULT_LANGUAGE) -> str:
    prefix = CURRENCY_PREFIX.get((language or "").lower(), CURRENCY_PREFIX[DEFAULT_LANGUAGE])
    return f"{prefix} {to_decimal(amount).quantize(Decimal('0.01')):.2f}"


def format_date(value: datetime, language: str = DEFAULT_LANGUAGE) -> str:
    if (language or "").lower() in ("sinhala", "tamil"):
        return value.strftime("%d/%m/%Y")
    return value.strftime("%m/%d/%Y")


def format_time(value: datetime, language: str = DEFAULT_LANGUAGE) -> str:
    return value.strftime("%I:%M %p")
