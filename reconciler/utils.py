import re

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

pattern = re.compile(r"(?<=[a-z])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
def camel_to_snake(a_str):
    return pattern.sub('_', a_str).lower()

def chunked(lst, step):
    """Split a list into chunks of size `step`."""
    lst = list(lst)
    return [lst[i:i + step] for i in range(0, len(lst), step)]

def secret_text(t, n):
    if len(t) > ((2 * n) + 3):
        return t[:n] + "..." + t[-1 * n:]
    else:
        return t[:n] + "***..."

def well_known_addresses(n=10):
    """0x...01 through 0x...0a, the low addresses test deployments tend to fund."""
    return ['0x' + hex(i)[2:].rjust(40, '0') for i in range(1, n + 1)]
