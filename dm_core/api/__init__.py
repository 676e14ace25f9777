"""面向上层应用的入口。"""
