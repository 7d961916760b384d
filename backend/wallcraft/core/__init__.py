"""配置、数据库、认证与错误类型"""
