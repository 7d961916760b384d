"""中间件"""
