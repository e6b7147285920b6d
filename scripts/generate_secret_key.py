#!/usr/bin/env python3
"""
Print a fresh JWT_SECRET_KEY line for the BloodLink .env file.
"""

import secrets

if __name__ == "__main__":
    print("# BloodLink session signing key")
    print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
    print("# Paste the line above into .env; rotating it signs everyone out.")
