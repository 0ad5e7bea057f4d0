"""Digest Vault Meta information.
   Digest Vault keeps OAuth credentials sealed at rest and calls
   rate-limited APIs with a shared retry policy.
"""
__title__ = 'digest_vault'
__description__ = (
   'Passphrase-sealed credential store, OAuth2 token lifecycle '
   'and retrying remote calls for the newsletter digest.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 Digest Vault Authors'
__author__ = 'Digest Vault Authors'
__author_email__ = 'maintainers@digest-vault.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/digest-vault/digest-vault'
