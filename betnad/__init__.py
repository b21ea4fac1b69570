"""
BetNad backend package.

FastAPI service handling Firebase/Twitter authentication, Privy wallet
provisioning and user/wallet persistence in MongoDB.
"""
