import re
from collections.abc import Mapping
from decimal import Decimal
from fractions import Fraction

from web3 import Web3

from .errors import DecodeError

BASIS_POINTS = 10_000
PERMILLE = 1_000
PERCENT = 100

DECIMAL_STR = re.compile(r"^-?\d+$")
HEX_STR = re.compile(r"^0[xX][0-9a-fA-F]*$")


class ValueNormalizer:
    """
    Every numeric value that crosses the wire (contract returns, decoded log
    fields, indexer JSON) goes through here before the engine does arithmetic.

    The accepted encodings are a closed set.  Anything else is a DecodeError,
    which fallback chains treat as "this source is unusable".
    """

    def to_int(self, value):

        if isinstance(value, bool):
            raise DecodeError(f"E100191026 - Refusing to read a bool as an integer: {value!r}")

        if isinstance(value, int):
            return value

        if isinstance(value, (bytes, bytearray)):
            return int.from_bytes(value, 'big')

        if isinstance(value, str):
            s = value.strip()
            if HEX_STR.match(s):
                return int(s, 16) if len(s) > 2 else 0
            if DECIMAL_STR.match(s):
                return int(s)
            raise DecodeError(f"E101191026 - Unrecognized numeric string: {value!r}")

        if isinstance(value, Decimal):
            if value.is_finite() and value == value.to_integral_value():
                return int(value)
            raise DecodeError(f"E102191026 - Non-integral decimal: {value!r}")

        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise DecodeError(f"E103191026 - Non-integral float: {value!r}")

        if isinstance(value, Mapping):
            # The JSON shape of a serialized big-number object.
            if '_hex' in value:
                return self.to_int(value['_hex'])
            if value.get('type') == 'BigNumber' and 'hex' in value:
                return self.to_int(value['hex'])

        raise DecodeError(f"E104191026 - Unsupported numeric encoding {type(value).__name__}: {value!r}")

    def to_fraction(self, value, scale=BASIS_POINTS):
        return Fraction(self.to_int(value), scale)

    def to_rate(self, value, scale=BASIS_POINTS):
        return float(self.to_fraction(value, scale))

    def to_token_units(self, value, decimals=18):

        wei = self.to_int(value)

        if wei == 0:
            return "0"

        if decimals == 18:
            amount = Web3.from_wei(wei, 'ether')
        else:
            amount = Decimal(wei) / (Decimal(10) ** decimals)

        return format(amount, 'f')

    def struct_field(self, raw, name, index):
        """
        Contract struct returns show up keyed (dicts, AttributeDicts), as named
        tuples, or as plain positional tuples depending on the provider.
        """

        if isinstance(raw, Mapping) and name in raw:
            return raw[name]

        if not isinstance(raw, (str, bytes)) and hasattr(raw, name):
            return getattr(raw, name)

        if isinstance(raw, (list, tuple)) and index is not None and index < len(raw):
            return raw[index]

        raise DecodeError(f"E105191026 - Field {name}[{index}] not present in {type(raw).__name__}")


normalizer = ValueNormalizer()

to_int = normalizer.to_int
to_fraction = normalizer.to_fraction
to_rate = normalizer.to_rate
to_token_units = normalizer.to_token_units
struct_field = normalizer.struct_field
