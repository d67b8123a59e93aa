"""Matching print jobs against printer capabilities."""

# A3 > A4 > Letter
PAPER_SIZE_RANK = {"A3": 3, "A4": 2, "Letter": 1}


def capability_errors(capabilities: dict | None, file_type: str | None, options: dict | None) -> list[str]:
    """
    Returns the reasons a printer cannot take the job; empty means it can.
    A capability the printer does not declare is not enforced.
    """
    if not capabilities:
        return []
    options = options or {}
    errors = []

    page_size = options.get("page_size")
    sizes = capabilities.get("supported_page_sizes") or []
    if sizes and page_size not in sizes:
        errors.append(f"Page size {page_size} not supported. Supported sizes: {', '.join(sizes)}")

    max_size = capabilities.get("max_paper_size")
    if max_size and PAPER_SIZE_RANK.get(page_size, 0) > PAPER_SIZE_RANK.get(max_size, 0):
        errors.append(f"Page size {page_size} exceeds printer maximum {max_size}")

    if options.get("color") in ("color", "mixed") and capabilities.get("supports_color") is False:
        errors.append("Job requires color printing but printer does not support color")

    if options.get("sided") == "double" and capabilities.get("supports_duplex") is False:
        errors.append("Job requires duplex printing but printer does not support duplex")

    file_types = capabilities.get("supported_file_types") or []
    if file_types and file_type not in file_types:
        errors.append(f"File type {file_type} not supported")

    max_copies = capabilities.get("max_copies")
    copies = options.get("copies") or 1
    if max_copies and copies > max_copies:
        errors.append(f"Job requires {copies} copies but printer maximum is {max_copies}")

    return errors


def can_print(printer, job) -> bool:
    return not capability_errors(printer.capabilities, job.file_type, job.printing_options)
