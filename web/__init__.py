"""HTTP layer: FastAPI app factory, routes and middleware"""
