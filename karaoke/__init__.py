"""
karaoke
~~~~~~~

卡拉 OK 派对房间协调服务。
"""
