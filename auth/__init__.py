"""auth/ -- Session pass package for EdgeGate: cookie codec and request helpers.

Layer rule: auth/ may import from core/ (models, config) but never from api/
or web/. api/ and web/ import from auth/, not the other way around.
"""
