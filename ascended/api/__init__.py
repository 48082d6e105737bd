"""HTTP surface: app factory, middlewares and route modules"""
