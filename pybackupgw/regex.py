import re

IPV4_REGEX = re.compile(r'^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$')

# Certificate subject CN used by relays, e.g. "proxy-for:10.0.1.20" or "relay for 10.0.1.20"
RELAY_CN_REGEX = re.compile(r'^\s*(?:relay|proxy)[\s_-]*for\s*[:=]?\s*(?P<address>[\w.:\[\]-]+)\s*$', re.IGNORECASE)


def is_valid_ipv4(address) -> bool:
    if not isinstance(address, str) or not IPV4_REGEX.match(address):
        return False
    return all(int(octet) <= 255 for octet in address.split('.'))


def parse_relay_address(common_name):
    if not common_name:
        return None
    match = RELAY_CN_REGEX.match(common_name)
    if not match:
        return None
    return match.group('address')
