"""
Country tax rates applied at checkout.

Rates are percentages keyed by ISO 3166-1 alpha-2 code. Unknown countries
are charged no tax.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

DEFAULT_COUNTRY = "US"

_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True)
class TaxInfo:
    rate: Decimal
    name: str


@dataclass(frozen=True)
class TaxCalculation:
    subtotal: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    tax_name: str
    country: str

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_amount


NO_TAX = TaxInfo(Decimal("0"), "No Tax")

TAX_RATES = {
    # North America
    "US": NO_TAX,  # sales tax varies by state
    "CA": TaxInfo(Decimal("13"), "GST/HST"),
    "MX": TaxInfo(Decimal("16"), "IVA"),
    # Europe
    "GB": TaxInfo(Decimal("20"), "VAT"),
    "DE": TaxInfo(Decimal("19"), "VAT"),
    "FR": TaxInfo(Decimal("20"), "VAT"),
    "IT": TaxInfo(Decimal("22"), "VAT"),
    "ES": TaxInfo(Decimal("21"), "VAT"),
    "NL": TaxInfo(Decimal("21"), "VAT"),
    "SE": TaxInfo(Decimal("25"), "VAT"),
    "PL": TaxInfo(Decimal("23"), "VAT"),
    "IE": TaxInfo(Decimal("23"), "VAT"),
    "AT": TaxInfo(Decimal("20"), "VAT"),
    "BE": TaxInfo(Decimal("21"), "VAT"),
    "DK": TaxInfo(Decimal("25"), "VAT"),
    "FI": TaxInfo(Decimal("24"), "VAT"),
    "PT": TaxInfo(Decimal("23"), "VAT"),
    "CZ": TaxInfo(Decimal("21"), "VAT"),
    "RO": TaxInfo(Decimal("19"), "VAT"),
    "GR": TaxInfo(Decimal("24"), "VAT"),
    # Asia Pacific
    "IN": TaxInfo(Decimal("18"), "GST"),
    "CN": TaxInfo(Decimal("13"), "VAT"),
    "JP": TaxInfo(Decimal("10"), "Consumption Tax"),
    "KR": TaxInfo(Decimal("10"), "VAT"),
    "AU": TaxInfo(Decimal("10"), "GST"),
    "NZ": TaxInfo(Decimal("15"), "GST"),
    "SG": TaxInfo(Decimal("8"), "GST"),
    "MY": TaxInfo(Decimal("6"), "SST"),
    "TH": TaxInfo(Decimal("7"), "VAT"),
    "ID": TaxInfo(Decimal("11"), "VAT"),
    "PH": TaxInfo(Decimal("12"), "VAT"),
    "VN": TaxInfo(Decimal("10"), "VAT"),
    # Middle East & Africa
    "AE": TaxInfo(Decimal("5"), "VAT"),
    "SA": TaxInfo(Decimal("15"), "VAT"),
    "IL": TaxInfo(Decimal("17"), "VAT"),
    "ZA": TaxInfo(Decimal("15"), "VAT"),
    "NG": TaxInfo(Decimal("7.5"), "VAT"),
    "KE": TaxInfo(Decimal("16"), "VAT"),
    # Latin America
    "BR": TaxInfo(Decimal("17"), "ICMS"),
    "AR": TaxInfo(Decimal("21"), "IVA"),
    "CL": TaxInfo(Decimal("19"), "IVA"),
    "CO": TaxInfo(Decimal("19"), "IVA"),
    "PE": TaxInfo(Decimal("18"), "IGV"),
}


def get_tax_info(country: Optional[str]) -> TaxInfo:
    if not country:
        return NO_TAX
    return TAX_RATES.get(country.upper(), NO_TAX)


def calculate_tax(amount, country: Optional[str]) -> TaxCalculation:
    """Tax owed on ``amount`` USDC for a buyer in ``country``, rounded to whole base units."""
    country = (country or DEFAULT_COUNTRY).upper()
    info = get_tax_info(country)
    subtotal = Decimal(amount)
    tax_amount = (subtotal * info.rate / 100).quantize(_QUANTUM, rounding=ROUND_HALF_UP)
    return TaxCalculation(
        subtotal=subtotal,
        tax_amount=tax_amount,
        tax_rate=info.rate,
        tax_name=info.name,
        country=country,
    )
