"""
种子数据配置 - 支持可替换的初始数据

部署到新环境时可以实现自己的 SeedConfig，替换默认的示例数据。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class SeedConfig(ABC):
    """种子数据抽象基类"""

    @abstractmethod
    def get_users(self) -> List[Dict[str, Any]]:
        """获取初始用户列表"""
        pass

    @abstractmethod
    def get_numbers(self) -> List[Dict[str, Any]]:
        """获取初始号码列表（owner 为用户名，可为空）"""
        pass

    @abstractmethod
    def get_providers(self) -> List[Dict[str, Any]]:
        """获取服务商列表"""
        pass

    def get_settings(self) -> List[Dict[str, Any]]:
        """获取系统设置（默认无）"""
        return []


class DefaultPRNSeed(SeedConfig):
    """默认示例数据：一个管理员、一个客服、两个号码持有人"""

    def get_users(self) -> List[Dict[str, Any]]:
        return [
            {"username": "admin", "full_name": "Platform Admin", "role": "admin"},
            {"username": "support", "full_name": "Support Desk", "role": "support"},
            {
                "username": "alice", "full_name": "Alice Carter", "role": "user",
                "payment_method": "usdt", "usdt_address": "TXa1b2c3d4e5f6",
            },
            {
                "username": "bob", "full_name": "Bob Mensah", "role": "user",
                "payment_method": "bank", "bank_name": "First Bank",
                "bank_account_number": "0123456789",
                "bank_routing_number": "021000021",
            },
        ]

    def get_numbers(self) -> List[Dict[str, Any]]:
        return [
            {
                "value": "+44 7700 900123", "name": "UK Voice 1",
                "country_code": "UK", "channel_type": "voice",
                "service_type": "Entertainment", "rate_per_minute": "1.50",
                "owner": "alice",
            },
            {
                "value": "+1 900 555 0199", "name": "US Combined 1",
                "country_code": "US", "channel_type": "combined",
                "service_type": "Psychic", "rate_per_minute": "2.00",
                "rate_per_sms": "0.50", "owner": "alice",
            },
            {
                "value": "+234 809 000 1111", "name": "NG SMS 1",
                "country_code": "NG", "channel_type": "sms",
                "service_type": "Voting", "rate_per_sms": "0.25",
                "owner": "bob",
            },
            {
                "value": "+49 900 123 4567", "name": "DE Voice Pool",
                "country_code": "DE", "channel_type": "voice",
                "service_type": "Entertainment", "rate_per_minute": "1.20",
            },
        ]

    def get_providers(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "GlobalTel", "service_type": "voice",
                "description": "Premium voice routes",
                "pricing_details": "Revenue share 70/30, weekly settlement",
                "supported_countries": "UK, US, DE",
                "website": "https://globaltel.example",
            },
            {
                "name": "AfriSMS", "service_type": "sms",
                "description": "SMS shortcodes across Africa",
                "pricing_details": "0.05 USD per MT message",
                "supported_countries": "NG,ZA",
            },
        ]

    def get_settings(self) -> List[Dict[str, Any]]:
        return [
            {"key": "min_payout_amount", "value": "10", "category": "payouts",
             "description": "Minimum payout shown to users"},
        ]


# 默认使用示例数据
seed_config = DefaultPRNSeed()
