"""Request middlewares (session guard, authentication, security headers)"""
