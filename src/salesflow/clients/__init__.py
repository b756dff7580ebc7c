"""
salesflow.clients

Outbound service boundaries: payment gateway, WhatsApp gateway, SMTP.
"""
