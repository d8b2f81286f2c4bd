"""Markdown quotation reports rendered as Word documents."""
