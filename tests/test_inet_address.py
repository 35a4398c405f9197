import copy

import pytest

from proactornet.inet_address import InetAddress


def test_base():
    ia = InetAddress(9999, "127.0.0.2")
    ia2 = copy.copy(ia)
    assert ia.sockaddr() == ("127.0.0.2", 9999)
    assert ia2.to_ip() == "127.0.0.2"
    assert ia2.to_port() == 9999
    assert ia2.to_ip_port() == "127.0.0.2:9999"


def test_defaults():
    ia = InetAddress()
    assert ia.to_ip_port() == "127.0.0.1:0"


def test_from_sockaddr_round_trip():
    ia = InetAddress.from_sockaddr(("10.0.0.1", 80))
    assert ia.sockaddr() == ("10.0.0.1", 80)
    assert ia == InetAddress(80, "10.0.0.1")


def test_inequality_on_port():
    assert InetAddress(1, "10.0.0.1") != InetAddress(2, "10.0.0.1")


def test_invalid_ip_becomes_none_address():
    assert InetAddress(1, "not-an-ip").to_ip() == "255.255.255.255"


def test_port_out_of_range():
    with pytest.raises(ValueError):
        InetAddress(70000)