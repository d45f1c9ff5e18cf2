"""
Fortnight Budget - Biometric Sign-in Package

Lets users of the fortnight budget tracker sign in with the device
biometric (Face ID, Touch ID, Windows Hello, fingerprint) on top of a
password-only identity provider.

DESIGN PRINCIPLES:
1. The biometric gate is local; the password still opens the session
2. Confirm the password before adding a biometric
3. Nothing secret leaves the device unencrypted
4. Every step must be auditable
5. Storage and identity provider are swappable
"""

__version__ = "1.0.0"
__author__ = "Fortnight Budget Team"
