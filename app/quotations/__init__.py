"""Quotations: request value objects, report generation and the use cases
behind the quotation routes."""
