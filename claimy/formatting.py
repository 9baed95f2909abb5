import re

JID_SUFFIX = "@s.whatsapp.net"
_JID_PATTERN = re.compile(r"^\d+@s\.whatsapp\.net$")
_GROUP_PATTERN = re.compile(r"^\d+@g\.us$")
_E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def phone_to_jid(phone: str) -> str:
    """Normalise a phone number in any common notation to a WhatsApp JID.

    >>> phone_to_jid("+62 812-3456-7890")
    '6281234567890@s.whatsapp.net'
    """
    digits = re.sub(r"\D", "", phone).lstrip("0")
    return f"{digits}{JID_SUFFIX}"


def is_valid_jid(wa_jid: str) -> bool:
    return bool(_JID_PATTERN.match(wa_jid))


def is_valid_group_id(group_id: str) -> bool:
    return bool(_GROUP_PATTERN.match(group_id))


def is_valid_e164(phone: str) -> bool:
    return bool(_E164_PATTERN.match(phone))


def mask_jid(wa_jid: str) -> str:
    """Hide all but the first 4 digits of a JID for alerts and logs"""
    number, sep, domain = wa_jid.partition("@")
    if len(number) <= 4:
        return wa_jid
    return number[:4] + "*" * (len(number) - 4) + sep + domain
