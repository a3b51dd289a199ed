"""
SingleSign Command Line
=======================

    $ singlesign sign-file --file-path permits.json
    $ singlesign prove --file-path permits.json --signer 0x... --signature 0x...
    $ singlesign image-id
"""
