"""Address formatting for logs."""


def truncate_address(address: str, start: int = 8, end: int = 6) -> str:
    """
    Shorten an address for log lines.

    Examples:
        oct8UYokvM1DR2QpTD4mncgvRzfM6f9yDuRR1gmBASgTk8d → oct8UYok...SgTk8d
        oct123          → oct123

    Args:
        address: Full address
        start: Characters kept at the front
        end: Characters kept at the back

    Returns:
        Truncated address
    """
    if not address:
        return ""

    if len(address) <= start + end:
        return address

    return f"{address[:start]}...{address[-end:]}"
