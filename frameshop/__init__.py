"""Frame-to-product search core: catalog search, session cache and ranking signals."""
