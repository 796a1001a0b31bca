"""BizChat service data contract"""
