"""API 路由：gemini（/api/gemini）、line（/line）、admin（/api/admin）。"""
