"""SSDP discovery: wire protocol and advertiser lifecycle."""
