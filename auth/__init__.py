"""auth/ -- OTP signup/login, token issuance and identification for FinFlex.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/ for
typing). It does NOT import from api/. api/ imports from auth/, not the other
way around.
"""
