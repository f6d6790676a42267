"""Config：YAML 配置加载与校验。"""
